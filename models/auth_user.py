from dataclasses import dataclass


@dataclass
class AuthUser:
    id: str
