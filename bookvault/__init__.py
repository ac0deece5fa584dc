"""
BookVault core package.
Provides crypto primitives, Groth16 proof verification, the 1-out-of-N oblivious
transfer engine and the wire message types shared by server and buyer client.
"""

__all__ = ["auth", "cli", "crypto", "errors", "messages", "ot", "proof"]
