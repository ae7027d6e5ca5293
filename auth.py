"""
Authentication for the Drive API

Jobs run unattended between slices, so a saved token (OAuth) or a service
account key is required once the job exists. The browser consent flow is
only offered to interactive invocations.
"""
import json
import logging
import pickle
from pathlib import Path

from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from errors import AuthenticationError

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT = 'service_account'
OAUTH = 'oauth'


def detect_credential_type(credentials_file) -> str:
    """Return SERVICE_ACCOUNT or OAUTH for a credentials JSON file"""
    with open(credentials_file, 'r') as f:
        cred_data = json.load(f)

    if cred_data.get('type') == 'service_account':
        return SERVICE_ACCOUNT
    if cred_data.get('type') == 'authorized_user' or 'installed' in cred_data or 'web' in cred_data:
        return OAUTH

    raise AuthenticationError(f"Unknown credential type in {credentials_file}")


class GoogleAuthManager:
    """Builds credentials and the Drive service for one invocation"""

    def __init__(self, credentials_file, scopes, token_file=None, delegate_email=None,
                 interactive=True):
        """
        Initialize auth manager

        Args:
            credentials_file: Path to OAuth client or service account JSON
            scopes: List of OAuth scopes
            token_file: Where the OAuth token is cached between invocations
            delegate_email: User to impersonate (service account only)
            interactive: Whether a browser consent flow may be started
        """
        self.credentials_file = credentials_file
        self.scopes = scopes
        self.token_file = Path(token_file or f"{credentials_file}.token.pickle")
        self.delegate_email = delegate_email
        self.interactive = interactive
        self.creds = None
        self.auth_type = detect_credential_type(credentials_file)
        logger.debug(f"Credential type {self.auth_type}: {credentials_file}")

    def authenticate(self):
        """Authenticate and return credentials"""
        if self.auth_type == SERVICE_ACCOUNT:
            self.creds = self._service_account_credentials()
        else:
            self.creds = self._oauth_credentials()
        return self.creds

    def _service_account_credentials(self):
        credentials = service_account.Credentials.from_service_account_file(
            self.credentials_file,
            scopes=self.scopes
        )
        if self.delegate_email:
            logger.info(f"Delegating to: {self.delegate_email}")
            credentials = credentials.with_subject(self.delegate_email)

        logger.info("✓ Service Account authentication successful")
        return credentials

    def _oauth_credentials(self):
        creds = self._load_token()
        if creds and creds.valid:
            return creds

        if creds and creds.expired and creds.refresh_token:
            logger.info("Refreshing expired credentials")
            try:
                creds.refresh(Request())
                self._save_token(creds)
                return creds
            except Exception as e:
                logger.error(f"Error refreshing token: {e}")

        if not self.interactive:
            raise AuthenticationError(
                f"No valid token in {self.token_file}; run the job once interactively to authorize"
            )

        logger.info("Initiating new OAuth flow")
        flow = InstalledAppFlow.from_client_secrets_file(self.credentials_file, self.scopes)
        creds = flow.run_local_server(port=0)
        self._save_token(creds)
        return creds

    def _load_token(self):
        if not self.token_file.exists():
            return None
        logger.debug(f"Loading existing token from {self.token_file}")
        with open(self.token_file, 'rb') as token:
            return pickle.load(token)

    def _save_token(self, creds):
        with open(self.token_file, 'wb') as token:
            pickle.dump(creds, token)
        logger.info(f"Credentials saved to {self.token_file}")

    def get_drive_service(self):
        """Get authenticated Drive API service"""
        if not self.creds:
            self.authenticate()
        return build('drive', 'v3', credentials=self.creds, cache_discovery=False)
