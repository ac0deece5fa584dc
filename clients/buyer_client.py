import argparse
import json
from pathlib import Path

import requests
from websockets.sync.client import connect

from bookvault import crypto
from bookvault.messages import (
    DownloadAck,
    Init,
    OtAckBegin,
    OtRoundReply,
    OtRoundsComplete,
    RequestDownloadRef,
    SubmitProof,
    encode,
    parse_outbound,
)
from bookvault.ot import ObliviousReceiver


def create_order(base_url: str, token: str, commitment: str, price_cents: int) -> dict:
    res = requests.post(
        f"{base_url}/api/orders",
        json={"commitment": commitment, "price_cents": price_cents},
        headers={"Authorization": f"Bearer {token}"},
        timeout=5,
    )
    if res.status_code != 200:
        raise SystemExit(f"Could not create order: {res.text}")
    return res.json()


class PurchaseConversation:
    """Drives one purchase socket from INIT to DOWNLOAD_ACK."""

    def __init__(self, ws, choice: int):
        self.ws = ws
        self.choice = choice
        self.receiver = None

    def send(self, message):
        self.ws.send(json.dumps(encode(message)))

    def expect(self, kind: str):
        message = parse_outbound(self.ws.recv())
        if message.type == "ERROR":
            raise SystemExit(f"Server error {message.code}: {message.reason}")
        if message.type != kind:
            raise SystemExit(f"Expected {kind}, got {message.type}")
        return message

    def authenticate(self, token: str):
        self.send(Init(token=token))
        self.expect("READY_FOR_PROOF")

    def prove(self, proof: dict, public_signals: list):
        self.send(SubmitProof(proof=proof, public_signals=[str(s) for s in public_signals]))
        begin = self.expect("OT_BEGIN")
        self.receiver = ObliviousReceiver(begin.item_count, self.choice)
        self.send(OtAckBegin())

    def transfer(self) -> bytes:
        for round_index in range(self.receiver.bit_count):
            self.expect("OT_ROUND_BEGIN")
            public_key = self.receiver.round_public_key(round_index)
            self.send(OtRoundReply(round=round_index, public_key=public_key.hex()))
            challenge = self.expect("OT_ROUND_CHALLENGE")
            self.receiver.accept_challenge(challenge.to_challenge())
        if self.receiver.bit_count:
            self.send(OtRoundsComplete())
        delivered = self.expect("OT_DELIVER")
        return self.receiver.recover([bytes.fromhex(c) for c in delivered.encrypted_secrets])

    def download_ref(self) -> str:
        self.send(RequestDownloadRef(index=self.choice))
        return self.expect("DOWNLOAD_REF").url

    def acknowledge(self):
        self.send(DownloadAck())


def run(args):
    order_id = args.order_id
    if not order_id:
        order = create_order(args.server, args.token, args.commitment, args.price_cents)
        order_id = order["order_id"]
        print(f"Order {order_id} created; payment reference {order['payment_ref']}")

    proof = json.loads(Path(args.proof).read_text())
    public_signals = json.loads(Path(args.public).read_text())
    ws_url = args.server.replace("http", "ws", 1) + f"/ws/api/purchase/{order_id}"

    with connect(ws_url) as ws:
        conversation = PurchaseConversation(ws, args.index)
        conversation.authenticate(args.token)
        conversation.prove(proof, public_signals)
        secret_key = conversation.transfer()
        url = conversation.download_ref()
        res = requests.get(url, timeout=30)
        res.raise_for_status()
        plaintext = crypto.aead_decrypt(secret_key, res.content)
        Path(args.output).write_bytes(plaintext)
        conversation.acknowledge()
    print(f"Book written to {args.output}")


def main():
    parser = argparse.ArgumentParser(description="Buyer purchase workflow client")
    parser.add_argument("index", type=int, help="Catalog position of the book to buy (ordered by id)")
    parser.add_argument("--token", required=True, help="Bearer token of the buyer")
    parser.add_argument("--proof", default="proof.json", help="snarkjs proof JSON")
    parser.add_argument("--public", default="public.json", help="snarkjs public signals JSON")
    parser.add_argument("--order-id", help="Existing order id (skips order creation)")
    parser.add_argument("--commitment", help="Commitment for a new order")
    parser.add_argument("--price-cents", type=int, help="Price for a new order")
    parser.add_argument("--server", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--output", default="book.bin", help="Where to store the decrypted book")
    run(parser.parse_args())


if __name__ == "__main__":
    main()
