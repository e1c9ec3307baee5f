# avatar_agent/vs_agent.py
"""
Clients for the VS Agent admin API.

The same agent plays two roles for us:
  - messaging gateway: text / link messages to a connection, invitations
  - credential authority: credential types, issuance, proof requests

Every failure (transport error or non-2xx) surfaces as ExternalServiceError.
There is no retry; callers report the failure to the user.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from avatar_agent.errors import ExternalServiceError

logger = logging.getLogger("avatar_agent")


class _VsAgentHttp:
    service_name = "VS Agent"

    def __init__(self, base_url: str, timeout: float = 15.0, client: Optional[httpx.Client] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self._client.request(method, url, json=payload)
        except httpx.HTTPError as e:
            raise ExternalServiceError(self.service_name, f"{method} {path}: {e}") from e

        if response.status_code >= 400:
            detail = response.text or response.reason_phrase
            raise ExternalServiceError(self.service_name, f"{method} {path}: {detail}", response.status_code)
        return response

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise ExternalServiceError(self.service_name, f"invalid JSON response: {e}") from e
        return data if isinstance(data, dict) else {}

    def send_message(self, connection_id: str, message: Dict[str, Any]) -> Optional[str]:
        """
        POST /v1/message. Returns the message id the agent assigned, if any.
        """
        body = dict(message)
        body.setdefault("connectionId", connection_id)
        data = self._json(self._request("POST", "/v1/message", body))
        return data.get("id")

    def close(self) -> None:
        self._client.close()


class VsAgentGateway(_VsAgentHttp):
    def send_text(self, connection_id: str, content: str) -> None:
        self.send_message(connection_id, {"type": "text", "content": content})

    def send_link(self, connection_id: str, uri: str, title: str, description: str = "") -> None:
        self.send_message(
            connection_id,
            {
                "type": "media",
                "items": [
                    {
                        "mimeType": "text/html",
                        "uri": uri,
                        "title": title,
                        "description": description,
                        "openingMode": "fullScreen",
                    }
                ],
            },
        )

    def get_invitation_url(self) -> Optional[str]:
        data = self._json(self._request("GET", "/v1/invitation"))
        return data.get("url") or None

    def get_invitation(self) -> Dict[str, Any]:
        return self._json(self._request("GET", "/v1/invitation"))


class VsAgentCredentialAuthority(_VsAgentHttp):
    service_name = "credential authority"

    def register_credential_type(self, name: str, version: str, attributes: List[str]) -> str:
        data = self._json(
            self._request(
                "POST",
                "/credential-types",
                {"name": name, "version": version, "attributes": list(attributes)},
            )
        )
        definition_id = data.get("id")
        if not definition_id:
            raise ExternalServiceError(self.service_name, "credential type registration returned no id")
        return str(definition_id)

    def issue_credential(
        self,
        connection_id: str,
        credential_definition_id: str,
        claims: List[Dict[str, str]],
    ) -> Optional[str]:
        return self.send_message(
            connection_id,
            {
                "type": "credential-issuance",
                "credentialDefinitionId": credential_definition_id,
                "claims": claims,
            },
        )

    def request_proof(self, connection_id: str, proof_items: List[Dict[str, Any]]) -> Optional[str]:
        return self.send_message(
            connection_id,
            {
                "type": "identity-proof-request",
                "requestedProofItems": proof_items,
            },
        )

    def create_presentation_request(
        self,
        credential_definition_id: str,
        callback_url: str,
        ref: str,
        attributes: List[str],
    ) -> Dict[str, Any]:
        data = self._json(
            self._request(
                "POST",
                "/invitation/presentation-request",
                {
                    "callbackUrl": callback_url,
                    "ref": ref,
                    "requestedCredentials": [
                        {
                            "credentialDefinitionId": credential_definition_id,
                            "attributes": list(attributes),
                        }
                    ],
                },
            )
        )
        if not data.get("proofExchangeId"):
            raise ExternalServiceError(self.service_name, "presentation request returned no proofExchangeId")
        return data
