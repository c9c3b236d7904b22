from contextlib import contextmanager
from datetime import datetime

from authlib.jose import jwt
from httpx import AsyncClient

from paintbar.config import AuthOptions, get_settings

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
PNG_BYTES = PNG_SIGNATURE + b"\x00\x00\x00\rIHDR" + bytes(range(64))

HASH_A = "a" * 64
HASH_B = "b" * 64
HASH_C = "c" * 64


def create_token(**payload) -> str:
    header = {"alg": "HS256"}
    token = jwt.encode(header, payload, get_settings().jwt_secret)
    return token.decode("utf-8")


def build_headers(user=None, headers=None):
    if not headers:
        headers = {}
    if user:
        token = create_token(sub=user, aud=get_settings().host, exp=int(datetime.now().timestamp()) + 1000)
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def get_json(client: AsyncClient, url: str, expected=200, headers=None, user=None, **kargs):
    """Get the given URL. If expected is 2xx, return the result as parsed json"""
    response = await client.get(url, headers=build_headers(user, headers), **kargs)
    content = response.json() if response.content else None
    assert response.status_code == expected, f"GET {url} returned {response.status_code}, expected {expected}, {content}"
    return content


async def post_json(client: AsyncClient, url, expected=201, headers=None, user=None, **kargs):
    response = await client.post(url, headers=build_headers(user, headers), **kargs)
    assert response.status_code == expected, (
        f"POST {url} returned {response.status_code}, expected {expected}\n{response.json() if response.content else ''}"
    )
    return response.json() if response.content else {}


async def put_json(client: AsyncClient, url, expected=200, headers=None, user=None, **kargs):
    response = await client.put(url, headers=build_headers(user, headers), **kargs)
    assert response.status_code == expected, (
        f"PUT {url} returned {response.status_code}, expected {expected}\n{response.json()}"
    )
    return response.json()


async def delete_json(client: AsyncClient, url, expected=200, headers=None, user=None, **kargs):
    response = await client.delete(url, headers=build_headers(user, headers), **kargs)
    assert response.status_code == expected, (
        f"DELETE {url} returned {response.status_code}, expected {expected}\n{response.json()}"
    )
    return response.json()


class ChunkStream:
    """An upload stream that yields the given chunks and remembers whether it was closed"""

    def __init__(self, *chunks: bytes):
        self.chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self):
        self.closed = True


@contextmanager
def set_auth(level: AuthOptions = AuthOptions.authorized_users_only):
    """Context manager to set auth option"""
    old_auth = get_settings().auth
    get_settings().auth = level
    yield level
    get_settings().auth = old_auth


@contextmanager
def paintbar_settings(**kargs):
    settings = get_settings()
    old_settings = settings.model_dump()
    try:
        for k, v in kargs.items():
            setattr(settings, k, v)
        yield settings
    finally:
        for k, v in old_settings.items():
            setattr(settings, k, v)
