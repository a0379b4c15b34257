from types import SimpleNamespace

from folder_grants.google_api import GoogleWorkspaceClient


def test_service_account_email_comes_from_credentials() -> None:
    credentials = SimpleNamespace(service_account_email="grants@project.iam.gserviceaccount.com")
    client = GoogleWorkspaceClient("unused.json", credentials=credentials)

    assert client.service_account_email == "grants@project.iam.gserviceaccount.com"


def test_service_account_email_is_none_for_other_credentials() -> None:
    client = GoogleWorkspaceClient("unused.json", credentials=SimpleNamespace())

    assert client.service_account_email is None
