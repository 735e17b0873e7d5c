"""
Rudimentary login from the standard locations of the cluster credentials.

The tool is not a client library, and avoids bringing too much logic
for proper authentication, especially all the complex auth-providers.
Only the in-cluster service account and the kubeconfig files are supported.

.. seealso::
    :mod:`ktail.structs.credentials` and :mod:`ktail.clients.auth`.
"""
import logging
import os
from typing import Any, Dict, Optional

import yaml

from ktail.structs import credentials

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_TOKEN_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/token'
SERVICE_ACCOUNT_NAMESPACE_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/namespace'
SERVICE_ACCOUNT_CA_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/ca.crt'


def login(
        *,
        context: Optional[str] = None,
) -> credentials.ConnectionInfo:
    """
    Login with the first available method, or fail if none is available.

    An explicitly requested kubeconfig context disables the in-cluster login.
    """
    info: Optional[credentials.ConnectionInfo] = None
    if context is None and has_service_account():
        info = login_with_service_account()
        if info is not None:
            logger.debug("Logged in with the in-cluster service account.")
    if info is None and has_kubeconfig():
        info = login_with_kubeconfig(context=context)
        if info is not None:
            logger.debug("Logged in via the kubeconfig file.")
    if info is None:
        raise credentials.LoginError("Cannot login neither in-cluster, nor via kubeconfig.")
    return info


def has_service_account() -> bool:
    return os.path.exists(SERVICE_ACCOUNT_TOKEN_PATH)


def login_with_service_account(**_: Any) -> Optional[credentials.ConnectionInfo]:
    """
    A minimalistic login that gets the raw data from a service account.

    As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
    """
    if not os.path.exists(SERVICE_ACCOUNT_TOKEN_PATH):
        return None

    with open(SERVICE_ACCOUNT_TOKEN_PATH, encoding='utf-8') as f:
        token = f.read().strip()

    namespace: Optional[str] = None
    if os.path.exists(SERVICE_ACCOUNT_NAMESPACE_PATH):
        with open(SERVICE_ACCOUNT_NAMESPACE_PATH, encoding='utf-8') as f:
            namespace = f.read().strip()

    host = os.environ.get('KUBERNETES_SERVICE_HOST', 'kubernetes.default.svc')
    port = os.environ.get('KUBERNETES_SERVICE_PORT', '443')
    return credentials.ConnectionInfo(
        server=f'https://{host}:{port}',
        ca_path=SERVICE_ACCOUNT_CA_PATH if os.path.exists(SERVICE_ACCOUNT_CA_PATH) else None,
        token=token or None,
        default_namespace=namespace or None,
    )


def has_kubeconfig() -> bool:
    env_var_set = bool(os.environ.get('KUBECONFIG'))
    file_exists = os.path.exists(os.path.expanduser('~/.kube/config'))
    return env_var_set or file_exists


def login_with_kubeconfig(
        *,
        context: Optional[str] = None,
        **_: Any,
) -> Optional[credentials.ConnectionInfo]:
    """
    A minimalistic login that gets the raw data from the kubeconfig files.

    No parsing of exec-plugins or multi-step token retrieval is performed.

    As per https://kubernetes.io/docs/concepts/configuration/organize-cluster-access-kubeconfig/
    """
    kubeconfig = os.environ.get('KUBECONFIG')
    if not kubeconfig and os.path.exists(os.path.expanduser('~/.kube/config')):
        kubeconfig = '~/.kube/config'
    if not kubeconfig:
        return None

    paths = [path.strip() for path in kubeconfig.split(os.pathsep)]
    paths = [os.path.expanduser(path) for path in paths if path]

    # As prescribed: if the file is absent or non-deserialisable, then fail. The first value wins.
    current_context: Optional[str] = None
    contexts: Dict[Any, Any] = {}
    clusters: Dict[Any, Any] = {}
    users: Dict[Any, Any] = {}
    for path in paths:

        with open(path, encoding='utf-8') as f:
            config = yaml.safe_load(f.read()) or {}

        if current_context is None:
            current_context = config.get('current-context')
        for item in config.get('contexts') or []:
            if item['name'] not in contexts:
                contexts[item['name']] = item.get('context') or {}
        for item in config.get('clusters') or []:
            if item['name'] not in clusters:
                clusters[item['name']] = item.get('cluster') or {}
        for item in config.get('users') or []:
            if item['name'] not in users:
                users[item['name']] = item.get('user') or {}

    # Once fully parsed, use the requested or the current context only.
    context_name = context if context is not None else current_context
    if context_name is None:
        raise credentials.LoginError('Current context is not set in kubeconfigs.')
    if context_name not in contexts:
        raise credentials.LoginError(f'Context {context_name!r} is not found in kubeconfigs.')
    kube_context = contexts[context_name]
    cluster = clusters.get(kube_context.get('cluster'), {})
    user = users.get(kube_context.get('user'), {})
    if not cluster.get('server'):
        raise credentials.LoginError(f'The cluster of context {context_name!r} has no server.')

    provider_token = (user.get('auth-provider') or {}).get('config', {}).get('access-token')

    return credentials.ConnectionInfo(
        server=cluster.get('server'),
        ca_path=cluster.get('certificate-authority'),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=user.get('client-certificate'),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=user.get('client-key'),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token') or provider_token,
        default_namespace=kube_context.get('namespace'),
    )
