"""Cloud KMS signer for the GitHub App JWT.

The App private key never leaves Cloud KMS: the JWT signing input is hashed
locally and only the SHA-256 digest is sent for asymmetric signing. The key
version must use the ``RSA_SIGN_PKCS1_2048_SHA256`` (or larger PKCS#1
SHA-256) algorithm to produce RS256 signatures.
"""

import hashlib
from typing import Optional

from google.api_core.gapic_v1.client_info import ClientInfo
from google.cloud import kms


class KMSSigner:
    """Signer that delegates to a Cloud KMS asymmetric key version.

    Attributes:
        key_name: Full resource name of the CryptoKeyVersion.
    """

    def __init__(
        self,
        key_name: str,
        client: Optional[kms.KeyManagementServiceAsyncClient] = None,
        user_agent: Optional[str] = None,
    ):
        self.key_name = key_name
        self._client = client or kms.KeyManagementServiceAsyncClient(
            client_info=ClientInfo(user_agent=user_agent),
        )

    async def sign(self, message: bytes) -> bytes:
        digest = hashlib.sha256(message).digest()
        response = await self._client.asymmetric_sign(
            request={"name": self.key_name, "digest": {"sha256": digest}},
        )
        return response.signature

    async def close(self) -> None:
        await self._client.transport.close()
