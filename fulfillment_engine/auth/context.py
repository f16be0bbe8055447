from dataclasses import dataclass


@dataclass
class AuthContext:
    """Identity resolved from a verified bearer token."""
    user_id: str
    email: str | None = None

    def __post_init__(self) -> None:
        if self.email:
            self.email = self.email.strip().lower() or None
