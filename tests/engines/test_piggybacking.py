import textwrap

import pytest

from ktail.engines import piggybacking
from ktail.engines.piggybacking import has_kubeconfig, login, login_with_kubeconfig, \
                                       login_with_service_account
from ktail.structs.credentials import ConnectionInfo, LoginError

KUBECONFIG = textwrap.dedent("""
    current-context: ctx1
    contexts:
      - name: ctx1
        context: {cluster: cluster1, user: user1, namespace: ns1}
      - name: ctx2
        context: {cluster: cluster2, user: user2}
      - name: ctx3
        context: {cluster: cluster3, user: user1}
    clusters:
      - name: cluster1
        cluster:
          server: https://cluster1:443
          certificate-authority: /ca1.pem
      - name: cluster2
        cluster:
          server: https://cluster2:6443
          insecure-skip-tls-verify: true
      - name: cluster3
        cluster: {}
    users:
      - name: user1
        user: {token: token1}
      - name: user2
        user:
          username: username2
          password: password2
          client-certificate-data: Y2VydA==
          client-key-data: a2V5
""")


@pytest.fixture()
def no_service_account(mocker, tmp_path):
    mocker.patch.object(piggybacking, 'SERVICE_ACCOUNT_TOKEN_PATH', str(tmp_path / 'absent'))


@pytest.fixture()
def kubeconfig(tmp_path, monkeypatch):
    path = tmp_path / 'config'
    path.write_text(KUBECONFIG, encoding='utf-8')
    monkeypatch.setenv('KUBECONFIG', str(path))
    return path


@pytest.fixture()
def service_account(mocker, tmp_path, monkeypatch):
    token_path = tmp_path / 'token'
    namespace_path = tmp_path / 'namespace'
    ca_path = tmp_path / 'ca.crt'
    token_path.write_text('sa-token\n', encoding='utf-8')
    namespace_path.write_text('sa-ns\n', encoding='utf-8')
    ca_path.write_text('ca', encoding='utf-8')
    mocker.patch.object(piggybacking, 'SERVICE_ACCOUNT_TOKEN_PATH', str(token_path))
    mocker.patch.object(piggybacking, 'SERVICE_ACCOUNT_NAMESPACE_PATH', str(namespace_path))
    mocker.patch.object(piggybacking, 'SERVICE_ACCOUNT_CA_PATH', str(ca_path))
    monkeypatch.setenv('KUBERNETES_SERVICE_HOST', '10.0.0.1')
    monkeypatch.setenv('KUBERNETES_SERVICE_PORT', '8443')
    return ca_path


def test_kubeconfig_current_context(kubeconfig):
    info = login_with_kubeconfig()
    assert info == ConnectionInfo(
        server='https://cluster1:443',
        ca_path='/ca1.pem',
        token='token1',
        default_namespace='ns1',
    )


def test_kubeconfig_explicit_context(kubeconfig):
    info = login_with_kubeconfig(context='ctx2')
    assert info.server == 'https://cluster2:6443'
    assert info.insecure is True
    assert info.username == 'username2'
    assert info.password == 'password2'
    assert info.certificate_data == 'Y2VydA=='
    assert info.private_key_data == 'a2V5'
    assert info.token is None
    assert info.default_namespace is None


def test_kubeconfig_absent_context(kubeconfig):
    with pytest.raises(LoginError, match="'ctx9' is not found"):
        login_with_kubeconfig(context='ctx9')


def test_kubeconfig_without_server(kubeconfig):
    with pytest.raises(LoginError, match="has no server"):
        login_with_kubeconfig(context='ctx3')


def test_kubeconfig_without_current_context(tmp_path, monkeypatch):
    path = tmp_path / 'config'
    path.write_text('contexts: []\n', encoding='utf-8')
    monkeypatch.setenv('KUBECONFIG', str(path))

    with pytest.raises(LoginError, match="Current context is not set"):
        login_with_kubeconfig()


def test_kubeconfig_multiple_files_first_wins(kubeconfig, tmp_path, monkeypatch):
    override = tmp_path / 'override'
    override.write_text(textwrap.dedent("""
        current-context: ctx2
        clusters:
          - name: cluster2
            cluster: {server: 'https://override:443'}
    """), encoding='utf-8')
    monkeypatch.setenv('KUBECONFIG', f'{override}:{kubeconfig}')

    info = login_with_kubeconfig()

    assert info.server == 'https://override:443'
    assert info.username == 'username2'


def test_has_kubeconfig_via_envvar(kubeconfig):
    assert has_kubeconfig()


def test_service_account(service_account):
    info = login_with_service_account()
    assert info == ConnectionInfo(
        server='https://10.0.0.1:8443',
        ca_path=str(service_account),
        token='sa-token',
        default_namespace='sa-ns',
    )


def test_service_account_absent(no_service_account):
    assert login_with_service_account() is None


def test_login_prefers_the_service_account(service_account, kubeconfig):
    info = login()
    assert info.server == 'https://10.0.0.1:8443'


def test_login_with_context_uses_kubeconfig(service_account, kubeconfig):
    info = login(context='ctx2')
    assert info.server == 'https://cluster2:6443'


def test_login_falls_back_to_kubeconfig(no_service_account, kubeconfig):
    info = login()
    assert info.server == 'https://cluster1:443'


def test_login_fails_with_nothing(no_service_account, mocker, monkeypatch):
    monkeypatch.delenv('KUBECONFIG', raising=False)
    mocker.patch.object(piggybacking, 'has_kubeconfig', return_value=False)

    with pytest.raises(LoginError):
        login()
