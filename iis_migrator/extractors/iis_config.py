import os
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..utils.errors import PreconditionError

DEFAULT_APP_POOL = "DefaultAppPool"
DEFAULT_RUNTIME_VERSION = "v4.0"
DEFAULT_IDENTITY_TYPE = "ApplicationPoolIdentity"

_ENV_VAR_RE = re.compile(r"%([^%]+)%")


@dataclass
class Binding:
    protocol: str
    binding_information: str


@dataclass
class ApplicationPool:
    name: str
    managed_runtime_version: str = DEFAULT_RUNTIME_VERSION
    identity_type: str = DEFAULT_IDENTITY_TYPE


@dataclass
class Application:
    path: str
    application_pool: str
    physical_path: str = ""


@dataclass
class SiteConfig:
    name: str
    site_id: str = ""
    bindings: List[Binding] = field(default_factory=list)
    applications: List[Application] = field(default_factory=list)
    application_pools: Dict[str, ApplicationPool] = field(default_factory=dict)
    isapi_filters: List[str] = field(default_factory=list)
    windows_authentication: bool = False

    @property
    def physical_path(self) -> str:
        for app in self.applications:
            if app.path == "/":
                return app.physical_path
        return self.applications[0].physical_path if self.applications else ""

    def pool_for(self, app: Application) -> ApplicationPool:
        return self.application_pools.get(app.application_pool, ApplicationPool(name=app.application_pool))


def expand_iis_path(path):
    """Expande variáveis no formato %VAR% usadas pelo IIS em caminhos físicos.

    Variáveis desconhecidas são mantidas como estão.

    Args:
        path (str): Caminho possivelmente contendo %SystemDrive% ou similares.

    Returns:
        str: O caminho expandido.
    """
    if not path:
        return ""
    return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), m.group(0)), path)


def _is_enabled(element):
    return element is not None and (element.get("enabled") or "").lower() == "true"


def _windows_auth_setting(scope):
    """Returns True/False when the scope sets windowsAuthentication, else None."""
    if scope is None:
        return None
    element = scope.find("./security/authentication/windowsAuthentication")
    if element is None or element.get("enabled") is None:
        return None
    return _is_enabled(element)


def _filter_names(scope):
    if scope is None:
        return []
    return [f.get("name") or f.get("path") or "" for f in scope.findall("./isapiFilters/filter")]


def extract_site_config(config_path, site_name):
    """Extrai a configuração de um site a partir do applicationHost.config.

    Lê pools de aplicação, aplicações, bindings, filtros ISAPI globais e do
    site, e o estado da autenticação integrada do Windows (global, incluindo
    <location path="">, sobrescrito por seções <location> do site).

    Args:
        config_path (str): Caminho para o applicationHost.config.
        site_name (str): Nome do site no IIS.

    Returns:
        SiteConfig: A configuração normalizada do site.

    Raises:
        PreconditionError: Se o arquivo não existir ou o site não for encontrado.
        ET.ParseError: Se o XML estiver malformado.
    """
    if not config_path or not os.path.exists(config_path):
        raise PreconditionError(f"IIS configuration file not found: {config_path}")

    root = ET.parse(config_path).getroot()
    host = root.find("system.applicationHost")
    if host is None:
        raise PreconditionError(f"No <system.applicationHost> section in {config_path}")

    pools: Dict[str, ApplicationPool] = {}
    pools_element = host.find("applicationPools")
    pool_defaults = pools_element.find("applicationPoolDefaults") if pools_element is not None else None
    default_runtime = DEFAULT_RUNTIME_VERSION
    default_identity = DEFAULT_IDENTITY_TYPE
    if pool_defaults is not None:
        default_runtime = pool_defaults.get("managedRuntimeVersion", default_runtime)
        model = pool_defaults.find("processModel")
        if model is not None:
            default_identity = model.get("identityType", default_identity)
    if pools_element is not None:
        for add in pools_element.findall("add"):
            model = add.find("processModel")
            pools[add.get("name")] = ApplicationPool(
                name=add.get("name"),
                managed_runtime_version=add.get("managedRuntimeVersion", default_runtime),
                identity_type=model.get("identityType", default_identity) if model is not None else default_identity,
            )

    sites_element = host.find("sites")
    site_element = None
    default_pool = DEFAULT_APP_POOL
    if sites_element is not None:
        app_defaults = sites_element.find("applicationDefaults")
        if app_defaults is not None:
            default_pool = app_defaults.get("applicationPool", default_pool)
        for candidate in sites_element.findall("site"):
            if candidate.get("name") == site_name:
                site_element = candidate
                break
    if site_element is None:
        raise PreconditionError(f"Site '{site_name}' not found in {config_path}")

    site = SiteConfig(name=site_name, site_id=site_element.get("id", ""))
    for app in site_element.findall("application"):
        root_vdir = None
        for vdir in app.findall("virtualDirectory"):
            if vdir.get("path") == "/":
                root_vdir = vdir
                break
        site.applications.append(
            Application(
                path=app.get("path", "/"),
                application_pool=app.get("applicationPool", default_pool),
                physical_path=expand_iis_path(root_vdir.get("physicalPath", "")) if root_vdir is not None else "",
            )
        )
    for binding in site_element.findall("./bindings/binding"):
        site.bindings.append(
            Binding(
                protocol=(binding.get("protocol") or "").lower(),
                binding_information=binding.get("bindingInformation", ""),
            )
        )
    site.application_pools = {
        app.application_pool: pools.get(app.application_pool, ApplicationPool(name=app.application_pool))
        for app in site.applications
    }

    web_server = root.find("system.webServer")
    site.isapi_filters.extend(_filter_names(web_server))
    global_auth = _windows_auth_setting(web_server)

    # <location path=""> carries the server-wide sections (usually locked
    # with overrideMode).  A <location> for the site itself overrides the
    # global value; any sub-application enabling it flags the whole site.
    site_auth = None
    child_auth = False
    for location in root.findall("location"):
        path = location.get("path", "")
        scope = location.find("system.webServer")
        if not path.strip("/"):
            site.isapi_filters.extend(_filter_names(scope))
            setting = _windows_auth_setting(scope)
            if setting is not None:
                global_auth = setting
            continue
        if path != site_name and not path.startswith(site_name + "/"):
            continue
        site.isapi_filters.extend(_filter_names(scope))
        setting = _windows_auth_setting(scope)
        if setting is None:
            continue
        if path == site_name:
            site_auth = setting
        elif setting:
            child_auth = True
    site.windows_authentication = bool(global_auth if site_auth is None else site_auth) or child_auth
    return site


def _line_of(lines, needle, start=0):
    for index in range(start, len(lines)):
        if needle in lines[index]:
            return index + 1
    return 0


def extract_declared_connection_strings(web_config_path) -> List[Tuple[str, str, int]]:
    """Lê a seção <connectionStrings> de um web.config.

    Args:
        web_config_path (str): Caminho para o web.config do site.

    Returns:
        list: Tuplas (nome, connectionString, número da linha). A linha é 0
              quando o valor não pode ser localizado literalmente no arquivo
              (por exemplo, quando contém entidades XML).
    """
    if not web_config_path or not os.path.exists(web_config_path):
        return []
    root = ET.parse(web_config_path).getroot()
    with open(web_config_path, "r", encoding="utf-8", errors="replace") as f:
        lines = f.read().splitlines()

    results = []
    for add in root.findall("./connectionStrings/add"):
        value = add.get("connectionString")
        if not value:
            continue
        results.append((add.get("name", ""), value, _line_of(lines, value)))
    return results


def find_web_config(content_root) -> Optional[str]:
    path = os.path.join(content_root, "web.config")
    if os.path.exists(path):
        return path
    # IIS on Windows is case-insensitive, the content may have been copied elsewhere.
    if os.path.isdir(content_root):
        for entry in os.listdir(content_root):
            if entry.lower() == "web.config":
                return os.path.join(content_root, entry)
    return None
