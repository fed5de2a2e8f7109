import logging
from dataclasses import dataclass
from typing import Optional
from itsdangerous import URLSafeTimedSerializer, BadSignature
from kitroom.configs import SEED, TOKEN_TTL

logger = logging.getLogger(__name__)

SERIALIZER = None  # Will be initialized lazily

PRIVILEGED_ROLES = frozenset({'admin', 'supervisor'})
ROLE_ALIASES = {
    'amministratore': 'admin',
    'utente': 'user',
    '': 'user',
}


@dataclass(frozen=True)
class Identity:
    """Who is calling, as vouched for by the identity provider."""
    user_id: int
    role: str = 'user'
    course: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_privileged(self) -> bool:
        return is_privileged(self.role)


def normalize_role(role: Optional[str]) -> str:
    raw = (role or '').strip().lower()
    return ROLE_ALIASES.get(raw, raw)

def is_privileged(role: Optional[str]) -> bool:
    """The one capability check: may this role administer the lending desk?"""
    return normalize_role(role) in PRIVILEGED_ROLES


def _get_serializer():
    """Get or initialize the SERIALIZER lazily."""
    global SERIALIZER
    if SERIALIZER is None:
        SERIALIZER = URLSafeTimedSerializer(SEED, salt="kitroom-identity")
    return SERIALIZER

def create_token(identity: Identity) -> str:
    """Returns a signed bearer token for an identity."""
    return _get_serializer().dumps({
        "user_id": identity.user_id,
        "role": normalize_role(identity.role),
        "course": identity.course,
        "email": identity.email,
        "name": identity.name,
    })

def verify_token(token: Optional[str]) -> Optional[Identity]:
    """Retrieves and verifies the identity carried by a bearer token."""
    if not token:
        return None
    try:
        data = _get_serializer().loads(token, max_age=TOKEN_TTL)
    except BadSignature:
        logger.info("rejected bearer token with a bad signature")
        return None
    if not isinstance(data, dict) or "user_id" not in data:
        return None
    return Identity(
        user_id=int(data["user_id"]),
        role=normalize_role(data.get("role")),
        course=data.get("course"),
        email=data.get("email"),
        name=data.get("name"),
    )
