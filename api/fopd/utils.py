import base64, hashlib, json, re
from datetime import datetime, timezone
from itsdangerous import URLSafeSerializer, BadSignature
from .config import SECRET_KEY

def b64png_to_bytes(data_url: str) -> bytes:
    # expects "data:image/png;base64,....."
    if "," in data_url:
        data_url = data_url.split(",", 1)[1]
    return base64.b64decode(data_url, validate=True)

def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def sha256_text(s: str) -> str:
    return sha256_bytes(s.encode("utf-8"))

def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)

def utcnow() -> datetime:
    # naive UTC, matching what the database columns store
    return datetime.now(timezone.utc).replace(tzinfo=None)

def sanitize_name(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", value or "")

def make_token(payload: dict) -> str:
    s = URLSafeSerializer(SECRET_KEY, salt="investor-access")
    return s.dumps(payload)

def read_token(token: str) -> dict:
    s = URLSafeSerializer(SECRET_KEY, salt="investor-access")
    try:
        return s.loads(token)
    except BadSignature:
        return {}
