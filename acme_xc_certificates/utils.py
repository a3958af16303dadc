import base64
import hashlib
import hmac
import json
import logging
import os
from pathlib import Path

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

logger = logging.getLogger(__name__)

EC_CURVES = {
    "secp256r1": ("P-256", "ES256", hashes.SHA256(), 32),
    "secp384r1": ("P-384", "ES384", hashes.SHA384(), 48),
}


def rsa_jwk_public(key: rsa.RSAPrivateKey | rsa.RSAPublicKey) -> dict:
    """
    Convert an RSA private key to a JSON Web Key (JWK) public key.

    Args:
        key (rsa.RSAPrivateKey): RSA private key.

    Returns:
        dict: JWK public key.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        key = key.public_key()

    public_numbers = key.public_numbers()

    return {
        "kty": "RSA",
        "n": b64url_uint(public_numbers.n),
        "e": b64url_uint(public_numbers.e),
    }


def ec_jwk_public(key: ec.EllipticCurvePrivateKey | ec.EllipticCurvePublicKey) -> dict:
    """
    Convert an EC key to a JSON Web Key (JWK) public key.

    Coordinates are left-padded to the curve size as RFC 7518 requires.

    Raises:
        TypeError: If the curve is not supported.
    """
    if isinstance(key, ec.EllipticCurvePrivateKey):
        key = key.public_key()

    if key.curve.name not in EC_CURVES:
        raise TypeError(f"Unsupported curve: {key.curve.name}")

    crv, _, _, size = EC_CURVES[key.curve.name]
    public_numbers = key.public_numbers()

    return {
        "kty": "EC",
        "crv": crv,
        "x": b64url(public_numbers.x.to_bytes(size, "big")),
        "y": b64url(public_numbers.y.to_bytes(size, "big")),
    }


def jwk_public(key) -> dict:
    """Return the public JWK for an RSA or EC key."""
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return rsa_jwk_public(key)
    if isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        return ec_jwk_public(key)
    raise TypeError(f"Unsupported key type: {type(key).__name__}")


def jws_algorithm(key) -> str:
    """Return the JWS "alg" value matching a private key."""
    if isinstance(key, rsa.RSAPrivateKey):
        return "RS256"
    if isinstance(key, ec.EllipticCurvePrivateKey):
        if key.curve.name not in EC_CURVES:
            raise TypeError(f"Unsupported curve: {key.curve.name}")
        return EC_CURVES[key.curve.name][1]
    raise TypeError(f"Unsupported key type: {type(key).__name__}")


def sign(key, data: bytes) -> bytes:
    """
    Sign data for a JWS.

    EC signatures are converted from DER to the fixed-size r || s form.

    Args:
        key: RSA or EC private key.
        data (bytes): Signing input.

    Returns:
        bytes: Raw signature.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        return key.sign(data, padding.PKCS1v15(), hashes.SHA256())

    if isinstance(key, ec.EllipticCurvePrivateKey):
        _, _, hash_algorithm, size = EC_CURVES[key.curve.name]
        r, s = decode_dss_signature(key.sign(data, ec.ECDSA(hash_algorithm)))
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")

    raise TypeError(f"Unsupported key type: {type(key).__name__}")


def b64url_uint(n: int) -> str:
    """
    Convert an unsigned integer to a Base64url-encoded string.

    Args:
        n (int): Unsigned integer.

    Raises:
        TypeError: If the input is not an unsigned integer.

    Returns:
        str: Base64url-encoded string.
    """
    if not isinstance(n, int) or n < 0:
        raise TypeError("Input must be an unsigned integer")

    length = max(1, (n.bit_length() + 7) // 8)

    encoded = base64.urlsafe_b64encode(n.to_bytes(length, "big")).rstrip(b"=")

    return encoded.decode("ascii")


def b64url(data: bytes) -> str:
    """
    Convert binary data to a Base64url-encoded string.

    Args:
    - data (bytes): Binary data.

    Returns:
    - str: Base64url-encoded string.
    """
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    """Decode a Base64url string, with or without padding."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def json_thumbprint(data: dict) -> str:
    """
    Calculate the RFC 7638 JWK thumbprint of a dictionary.

    Args:
    - data (dict): Input data.

    Returns:
    - str: Base64url-encoded JSON thumbprint.
    """
    return b64url(hashlib.sha256(json_encode(data)).digest())


def json_encode(data: dict) -> bytes:
    """
    Encode a dictionary as JSON and convert it to bytes.

    Args:
    - data (dict): Input data.

    Returns:
    - bytes: JSON-encoded data.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def build_eab(jwk: dict, eab_kid: str, eab_hmac_key: str, url: str) -> dict:
    """
    Build an External Account Binding JWS for a newAccount request.

    Args:
        jwk: Public JWK of the account key.
        eab_kid: Key identifier issued by the CA.
        eab_hmac_key: Base64url-encoded MAC key issued by the CA.
        url: The newAccount URL.

    Returns:
        dict: Flattened JWS signed with HS256.
    """
    protected = b64url(json_encode({"alg": "HS256", "kid": eab_kid, "url": url}))
    payload = b64url(json_encode(jwk))
    signing_input = f"{protected}.{payload}".encode("ascii")

    signature = hmac.new(b64url_decode(eab_hmac_key), signing_input, hashlib.sha256).digest()

    return {"protected": protected, "payload": payload, "signature": b64url(signature)}


def private_key_to_pem(private_key) -> str:
    """
    Converts a private key object to PKCS#8 PEM format.

    Args:
    - private_key: The private key object to convert.

    Returns:
    - str: PEM formatted string representation of the private key.
    """
    pem_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return pem_bytes.decode("ascii")


def write_private_file(path: Path, data: bytes) -> None:
    """Write a file readable only by its owner."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    os.chmod(path, 0o600)


def get_env_secrets(name: str, path: Path = Path(Path.cwd() / "secrets/")) -> str | None:
    """
    Get a secret from either an environment variable or a file in the secrets directory.

    Args:
        name (str): Environment variable name.
        path (Path): Path to the secrets directory (default: "secrets/").

    Returns:
        str: The secret value.

    Raises:
        OSError: If neither the environment variable nor the secret file exists.
    """
    secret = os.environ.get(name)

    if not secret and (path / name).exists():
        secret = (path / name).read_text().rstrip("\n")
        logger.debug(f"Loaded secret from file: {path}/{name}")
        return secret
    elif not secret:
        raise OSError(f"Environment variable and/or secret file variable: {path}/{name} not found")
    return secret


def resolve_secret(value: str | None, path: Path | None = None) -> str | None:
    """
    Resolve "env:NAME" references through get_env_secrets.

    Plain values are returned unchanged.
    """
    if not value or not value.startswith("env:"):
        return value

    name = value[len("env:"):]
    if path is None:
        return get_env_secrets(name)
    return get_env_secrets(name, path)
