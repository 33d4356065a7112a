from __future__ import annotations


# Telegram limits callback data to 64 bytes; UUIDs plus the prefix fit.
MAX_CALLBACK_BYTES = 64


def _check_size(data: str) -> str:
    if len(data.encode("utf-8")) > MAX_CALLBACK_BYTES:
        raise ValueError(f"Callback data too long: {data}")
    return data


def encode_vote_choice(env_id: str, choice_number: int, amount: int) -> str:
    """
    Encode a "vote on a choice" callback.

    Format: vote:{env_id}:{choice_number}:{amount}
    """

    return _check_size(f"vote:{env_id}:{choice_number}:{amount}")


def parse_vote_choice(data: str) -> tuple[str, int, int]:
    parts = data.split(":")
    if len(parts) != 4 or parts[0] != "vote":
        raise ValueError(f"Invalid vote callback data: {data}")

    env_id = parts[1]
    choice_number = int(parts[2])
    amount = int(parts[3])
    return env_id, choice_number, amount


def encode_cheer_letter(letter_id: str, amount: int) -> str:
    """
    Encode a "send moons to a letter" callback.

    Format: cheer:{letter_id}:{amount}
    """

    return _check_size(f"cheer:{letter_id}:{amount}")


def parse_cheer_letter(data: str) -> tuple[str, int]:
    parts = data.split(":")
    if len(parts) != 3 or parts[0] != "cheer":
        raise ValueError(f"Invalid cheer callback data: {data}")

    letter_id = parts[1]
    amount = int(parts[2])
    return letter_id, amount
