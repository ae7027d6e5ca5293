import json

import pytest

from auth import OAUTH, SERVICE_ACCOUNT, GoogleAuthManager, detect_credential_type
from errors import AuthenticationError


def write_json(path, data):
    path.write_text(json.dumps(data))
    return str(path)


def test_detect_credential_type(tmp_path):
    service = write_json(tmp_path / 'sa.json', {'type': 'service_account'})
    installed = write_json(tmp_path / 'client.json', {'installed': {'client_id': 'x'}})
    unknown = write_json(tmp_path / 'other.json', {'hello': 'world'})

    assert detect_credential_type(service) == SERVICE_ACCOUNT
    assert detect_credential_type(installed) == OAUTH
    with pytest.raises(AuthenticationError):
        detect_credential_type(unknown)


def test_unattended_run_without_token(tmp_path):
    client = write_json(tmp_path / 'client.json', {'installed': {'client_id': 'x'}})
    manager = GoogleAuthManager(client, ['scope'], token_file=tmp_path / 'token.pickle',
                                interactive=False)

    with pytest.raises(AuthenticationError):
        manager.authenticate()
