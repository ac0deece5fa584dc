import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path

from . import auth, crypto, proof


def _load_json(path: Path):
    return json.loads(path.read_text())


def cmd_encrypt_book(args):
    key = bytes.fromhex(args.key) if args.key else crypto.generate_item_key()
    if len(key) != crypto.KEY_SIZE:
        raise ValueError(f"key must be {crypto.KEY_SIZE} bytes")
    blob = crypto.aead_encrypt(key, Path(args.input).read_bytes())
    Path(args.output).write_bytes(blob)
    print(f"Encrypted book written to {args.output}")
    print(key.hex())


def cmd_decrypt_book(args):
    plaintext = crypto.aead_decrypt(bytes.fromhex(args.key), Path(args.input).read_bytes())
    Path(args.output).write_bytes(plaintext)
    print(f"Decrypted book written to {args.output}")


def cmd_issue_token(args):
    print(auth.issue_token(args.user_id, args.secret, ttl_seconds=args.ttl, username=args.username))


def cmd_verify_proof(args):
    verifier = proof.Groth16Verifier(proof.VerificationKey.load(args.vkey))
    claim = verifier.verify(_load_json(Path(args.proof)), _load_json(Path(args.public)), args.commitment)
    print(json.dumps(asdict(claim), indent=2))


def build_parser():
    parser = argparse.ArgumentParser(prog="bookvault", description="BookVault operator tools")
    sub = parser.add_subparsers(dest="command", required=True)

    p_enc = sub.add_parser("encrypt-book", help="Encrypt a book file for upload")
    p_enc.add_argument("input", help="Path to plaintext book")
    p_enc.add_argument("output", help="Path to write the encrypted blob")
    p_enc.add_argument("--key", help="Hex AES-256 key (generated when omitted)")
    p_enc.set_defaults(func=cmd_encrypt_book)

    p_dec = sub.add_parser("decrypt-book", help="Decrypt a downloaded book blob")
    p_dec.add_argument("input", help="Path to encrypted blob")
    p_dec.add_argument("key", help="Hex AES-256 key recovered from the purchase")
    p_dec.add_argument("output", help="Path to write the plaintext book")
    p_dec.set_defaults(func=cmd_decrypt_book)

    p_tok = sub.add_parser("issue-token", help="Mint a bearer token for a user id")
    p_tok.add_argument("user_id")
    p_tok.add_argument("--secret", required=True, help="JWT signing secret")
    p_tok.add_argument("--ttl", type=int, default=3600, help="Lifetime in seconds")
    p_tok.add_argument("--username")
    p_tok.set_defaults(func=cmd_issue_token)

    p_ver = sub.add_parser("verify-proof", help="Check a Groth16 purchase proof offline")
    p_ver.add_argument("vkey", help="Path to verification_key.json")
    p_ver.add_argument("proof", help="Path to proof.json")
    p_ver.add_argument("public", help="Path to public.json (public signals)")
    p_ver.add_argument("commitment", help="Expected commitment (decimal)")
    p_ver.set_defaults(func=cmd_verify_proof)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.func(args)
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
