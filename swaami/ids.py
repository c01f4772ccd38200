"""ID generation utilities."""

import secrets

from nanoid import generate

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
ID_LENGTH = 12


def gen_id(prefix: str) -> str:
    return f"{prefix}{generate(ALPHABET, ID_LENGTH)}"


def profile_id() -> str:
    return gen_id("pr_")


def user_ref() -> str:
    return gen_id("usr_")


def task_id() -> str:
    return gen_id("tk_")


def match_id() -> str:
    return gen_id("mt_")


def message_id() -> str:
    return gen_id("ms_")


def verification_id() -> str:
    return gen_id("vf_")


def endorsement_id() -> str:
    return gen_id("en_")


def ledger_id() -> str:
    return gen_id("le_")


def api_key() -> str:
    return f"sk_{secrets.token_urlsafe(24)}"


def endorsement_token() -> str:
    return secrets.token_urlsafe(18)


def error_reference() -> str:
    return gen_id("err_")
