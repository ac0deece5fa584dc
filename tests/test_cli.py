import json
import sys
from pathlib import Path

import jwt
import pytest

# Ensure project root on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bookvault import cli  # noqa: E402


def test_encrypt_then_decrypt_book(tmp_path, capsys):
    book = tmp_path / "book.txt"
    book.write_bytes(b"Call me Ishmael.")
    blob = tmp_path / "book.enc"
    out = tmp_path / "book.out"

    cli.main(["encrypt-book", str(book), str(blob)])
    key_hex = capsys.readouterr().out.strip().splitlines()[-1]
    assert len(bytes.fromhex(key_hex)) == 32
    assert blob.read_bytes() != book.read_bytes()

    cli.main(["decrypt-book", str(blob), key_hex, str(out)])
    assert out.read_bytes() == b"Call me Ishmael."


def test_decrypt_with_wrong_key_exits_nonzero(tmp_path, capsys):
    book = tmp_path / "book.txt"
    book.write_bytes(b"secret")
    blob = tmp_path / "book.enc"
    cli.main(["encrypt-book", str(book), str(blob), "--key", "11" * 32])
    capsys.readouterr()

    with pytest.raises(SystemExit) as exc:
        cli.main(["decrypt-book", str(blob), "22" * 32, str(tmp_path / "out")])
    assert exc.value.code == 1
    assert "decryption failed" in capsys.readouterr().err


def test_issue_token(capsys):
    cli.main(["issue-token", "user-7", "--secret", "s3cret", "--username", "ana"])
    token = capsys.readouterr().out.strip()
    claims = jwt.decode(token, "s3cret", algorithms=["HS256"])
    assert claims["sub"] == "user-7"
    assert claims["username"] == "ana"


def test_verify_proof(tmp_path, capsys, groth16_kit):
    signals = ["42", "7", "1234"]
    vkey = tmp_path / "vkey.json"
    proof = tmp_path / "proof.json"
    public = tmp_path / "public.json"
    vkey.write_text(json.dumps(groth16_kit.vkey))
    proof.write_text(json.dumps(groth16_kit.prove(signals)))
    public.write_text(json.dumps(signals))

    cli.main(["verify-proof", str(vkey), str(proof), str(public), "1234"])
    claim = json.loads(capsys.readouterr().out)
    assert claim["nullifier"] == "42"
    assert claim["commitment"] == "1234"

    with pytest.raises(SystemExit):
        cli.main(["verify-proof", str(vkey), str(proof), str(public), "999"])


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-vv", "-s", "--capture=no"]))
