import pytest

from fambudget.api import create_app
from fambudget.config import Config
from fambudget.container import build_services

PASSWORD = "correct-horse"


@pytest.fixture
def config(tmp_path):
    return Config(
        db_path=tmp_path / "fambudget.db",
        pool_size=4,
        pool_timeout=1.0,
        secret_key="test-secret",
        log_level="WARNING",
        log_json=False,
        testing=True,
    )


@pytest.fixture
def services(config):
    services = build_services(config)
    yield services
    services.close()


@pytest.fixture
def family(services):
    """An admin, a member and a child, with two admin accounts and two categories."""
    admin = services.auth.register({"email": "ann@example.com", "password": PASSWORD, "name": "Ann Admin"})
    member = services.auth.create_user(
        {"email": "mark@example.com", "password": PASSWORD, "name": "Mark Member", "role": "member"}
    )
    child = services.auth.create_user(
        {"email": "kid@example.com", "password": PASSWORD, "name": "Kim Child", "role": "child"}
    )
    checking = services.accounts.create(admin["id"], {"name": "Checking", "type": "checking"})
    savings = services.accounts.create(admin["id"], {"name": "Savings", "type": "savings"})
    groceries = services.categories.create({"name": "Groceries", "type": "expense"})
    salary = services.categories.create({"name": "Salary", "type": "income"})
    return {
        "admin": admin,
        "member": member,
        "child": child,
        "checking": checking,
        "savings": savings,
        "groceries": groceries,
        "salary": salary,
    }


def balance(services, account_id):
    return services.accounts.get(account_id)["balance"]


@pytest.fixture
def app(config, services):
    return create_app(config, services)


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, email, password=PASSWORD):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.get_json()
    return response.get_json()["user"]
