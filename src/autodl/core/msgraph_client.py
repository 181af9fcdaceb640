"""Microsoft Graph API client factory.

The directory session is built once per run and handed to
``EntraGroupManager``; nothing here is cached at module level.
"""

from azure.core.credentials import TokenCredential
from azure.identity import ClientSecretCredential
from msgraph import GraphServiceClient

from autodl.core.config import get_graph_credentials

GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]


def get_graph_client(credential: TokenCredential | None = None) -> GraphServiceClient:
    """Create an app-only MS Graph client.

    Args:
        credential: Token credential to use. If None, a client secret
            credential is built from the MS_GRAPH_* environment variables.

    Returns:
        Authenticated GraphServiceClient instance

    Raises:
        ValueError: If no credential is given and the environment is incomplete
    """
    if credential is None:
        tenant_id, client_id, client_secret = get_graph_credentials()
        credential = ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
        )

    return GraphServiceClient(credentials=credential, scopes=GRAPH_SCOPES)
