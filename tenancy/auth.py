from typing import Any

import jwt
import requests  # moto intercepts only requests, not httpx: https://github.com/getmoto/moto/issues/4197
from fastapi import HTTPException, Request, status
from fastapi.security import HTTPBearer
from jwt.utils import base64url_decode
from pydantic import BaseModel

from tenancy.i18n import _
from tenancy.settings import app_settings

JWK = dict[str, str]


class JWKS(BaseModel):
    keys: list[JWK]


class JWTAuthorizationCredentials(BaseModel):
    jwt_token: str
    header: dict[str, str]
    claims: dict[str, Any]
    signature: str
    message: str


class JWTAuthorization(HTTPBearer):
    """
    An extension of HTTPBearer authentication to verify JWT (JSON Web Tokens) with public keys.
    This class loads and keeps track of public keys from an external source and verifies incoming tokens.

    :param auto_error: If set to True, FastAPI's default error responses are sent when the header is missing.
                       Otherwise, a 403 error is raised by this class. Default is False.
    """

    def __init__(self, auto_error: bool = False):
        super().__init__(auto_error=auto_error)
        self.kid_to_jwk: dict[str, JWK] | None = None

    def load_keys(self) -> None:
        if self.kid_to_jwk is None:
            jwks = _get_public_keys()
            self.kid_to_jwk = {jwk["kid"]: jwk for jwk in jwks.keys}

    def verify_jwk_token(self, jwt_credentials: JWTAuthorizationCredentials) -> bool:
        """
        Verifies the provided JWT credentials with the loaded public keys.

        :param jwt_credentials: JWT credentials extracted from the request.
        :return: Returns True if the token is verified, False otherwise.
        """
        self.load_keys()
        assert self.kid_to_jwk is not None
        try:
            public_key = self.kid_to_jwk[jwt_credentials.header["kid"]]
        except KeyError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=_("JWK public key not found"),
            )

        msg = jwt_credentials.message.encode()
        sig = base64url_decode(jwt_credentials.signature.encode())

        obj = jwt.PyJWK(public_key)
        alg_obj = obj.Algorithm
        prepared_key = alg_obj.prepare_key(obj.key)

        return alg_obj.verify(msg, prepared_key, sig)

    async def __call__(self, request: Request) -> JWTAuthorizationCredentials:  # type: ignore[override]
        """
        Authenticate and verify the provided JWT token in the request.

        :param request: Incoming request instance.
        :return: JWT credentials if the token is verified.
        """
        if credentials := await super().__call__(request):
            if not credentials.scheme == "Bearer":
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=_("Wrong authentication method"),
                )

            jwt_token = credentials.credentials

            if "." in jwt_token:
                message, signature = jwt_token.rsplit(".", 1)
            else:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=_("JWK invalid"),
                )

            try:
                jwt_credentials = JWTAuthorizationCredentials(
                    jwt_token=jwt_token,
                    header=jwt.get_unverified_header(jwt_token),
                    claims=jwt.decode(jwt_token, options={"verify_signature": False, "verify_exp": True}),
                    signature=signature,
                    message=message,
                )
            except jwt.ExpiredSignatureError:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=_("Token expired"),
                )
            except jwt.InvalidTokenError:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=_("JWK invalid"),
                )

            if not self.verify_jwk_token(jwt_credentials):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=_("JWK invalid"),
                )

            return jwt_credentials
        else:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=_("Not authenticated"),
            )


public_keys: JWKS | None = None


def _get_public_keys() -> JWKS:
    """
    Retrieves the public keys from the JWKS (JSON Web Key Set) endpoint at
    :attr:`~tenancy.settings.Settings.jwks_url`.

    The function caches the fetched keys in a global variable `public_keys` to avoid repetitive calls
    to the endpoint.

    :return: The parsed JWKS, an object which holds a list of keys.
    """
    global public_keys
    if public_keys is None:
        public_keys = JWKS.model_validate(requests.get(app_settings.jwks_url, timeout=10).json())
    return public_keys
