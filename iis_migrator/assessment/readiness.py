"""
Readiness evaluation of an IIS site against the hosting platform.

Every check is an independent function taking a :class:`SiteConfig` and the
:class:`ReadinessSettings` and returning one frozen
:class:`~iis_migrator.models.ReadinessCheck`.  A check that finds an
incompatibility returns ``result=False``; it never raises for that.  Any
exception escaping a check means the site could not be evaluated at all, and
:func:`evaluate_readiness` turns it into a :class:`ReportGenerationError`.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from ..extractors.iis_config import SiteConfig
from ..models.records import ReadinessCheck, ReadinessReport
from ..utils.errors import ReportGenerationError

HTTP_PROTOCOLS = ("http", "https")
PRIVILEGED_IDENTITIES = ("LocalSystem",)


@dataclass
class ReadinessSettings:
    """
    Thresholds for the checks whose outcome is a matter of policy.

    ``max_applications_per_pool`` and ``allow_privileged_identity`` default to
    reporting the measured value without failing.
    """

    max_applications_per_pool: Optional[int] = None
    allow_privileged_identity: bool = True
    supported_runtime_versions: Tuple[str, ...] = field(default=("", "v2.0", "v4.0"))


Check = Callable[[SiteConfig, ReadinessSettings], ReadinessCheck]


def check_application_pool_isolation(site: SiteConfig, settings: ReadinessSettings) -> ReadinessCheck:
    counts = Counter(app.application_pool for app in site.applications)
    pool, most = counts.most_common(1)[0] if counts else ("", 0)
    limit = settings.max_applications_per_pool
    result = limit is None or most <= limit
    log = f"At most {most} application(s) share one pool"
    if pool:
        log += f" ('{pool}')"
    if limit is not None:
        log += f"; limit is {limit}"
    return ReadinessCheck(
        name="ApplicationPoolIsolation",
        description="Applications sharing a single application pool",
        result=result,
        log=log,
    )


def check_managed_runtime_versions(site: SiteConfig, settings: ReadinessSettings) -> ReadinessCheck:
    versions = sorted({site.pool_for(app).managed_runtime_version for app in site.applications})
    unsupported = [v for v in versions if v not in settings.supported_runtime_versions]
    shown = ", ".join(v or "No Managed Code" for v in versions) or "none"
    log = f"Managed runtime versions in use: {shown}"
    if unsupported:
        log += f"; unsupported: {', '.join(unsupported)}"
    return ReadinessCheck(
        name="ManagedRuntimeVersions",
        description=".NET CLR versions used by the site's application pools",
        result=not unsupported,
        log=log,
    )


def check_isapi_filters(site: SiteConfig, settings: ReadinessSettings) -> ReadinessCheck:
    filters = [f for f in site.isapi_filters if f]
    if filters:
        log = f"{len(filters)} ISAPI filter(s) must be migrated by hand: {', '.join(filters)}"
    else:
        log = "No ISAPI filters configured"
    return ReadinessCheck(
        name="IsapiFilters",
        description="Legacy ISAPI request filters",
        result=not filters,
        log=log,
    )


def check_windows_authentication(site: SiteConfig, settings: ReadinessSettings) -> ReadinessCheck:
    enabled = site.windows_authentication
    return ReadinessCheck(
        name="WindowsAuthentication",
        description="Integrated Windows authentication",
        result=not enabled,
        log="Windows authentication is enabled" if enabled else "Windows authentication is disabled",
    )


def check_binding_cardinality(site: SiteConfig, settings: ReadinessSettings) -> ReadinessCheck:
    counts = Counter(b.protocol for b in site.bindings)
    excess = {protocol: n for protocol, n in counts.items() if n > 1}
    if excess:
        log = "; ".join(f"Site has {n} {protocol} bindings, only 1 is supported" for protocol, n in sorted(excess.items()))
    else:
        log = ", ".join(f"{n} {protocol} binding" for protocol, n in sorted(counts.items())) or "No bindings"
    return ReadinessCheck(
        name="BindingCardinality",
        description="At most one port binding per protocol",
        result=not excess,
        log=log,
    )


def check_non_http_protocols(site: SiteConfig, settings: ReadinessSettings) -> ReadinessCheck:
    others = sorted({b.protocol for b in site.bindings if b.protocol not in HTTP_PROTOCOLS})
    return ReadinessCheck(
        name="NonHttpProtocols",
        description="Bindings on protocols other than HTTP and HTTPS",
        result=not others,
        log=f"Unsupported protocols: {', '.join(others)}" if others else "Only HTTP(S) bindings",
    )


def check_process_identity(site: SiteConfig, settings: ReadinessSettings) -> ReadinessCheck:
    privileged = sorted(
        {pool.name for pool in site.application_pools.values() if pool.identity_type in PRIVILEGED_IDENTITIES}
    )
    if privileged:
        log = f"Pools running as a privileged identity: {', '.join(privileged)}"
    else:
        log = "No pool runs as a privileged identity"
    return ReadinessCheck(
        name="ProcessIdentity",
        description="Application pool process identity privileges",
        result=settings.allow_privileged_identity or not privileged,
        log=log,
    )


CHECKS: Sequence[Check] = (
    check_application_pool_isolation,
    check_managed_runtime_versions,
    check_isapi_filters,
    check_windows_authentication,
    check_binding_cardinality,
    check_non_http_protocols,
    check_process_identity,
)


def evaluate_readiness(
    site: SiteConfig,
    settings: Optional[ReadinessSettings] = None,
    *,
    checks: Sequence[Check] = CHECKS,
) -> ReadinessReport:
    """
    Run every check against ``site`` and collect the results in order.

    :param site: Parsed site configuration.
    :param settings: Policy thresholds; defaults are used when omitted.
    :param checks: The battery to run, mainly overridden by tests.
    :return: The aggregated report.
    :raises ReportGenerationError: if any check fails to evaluate.
    """
    settings = settings or ReadinessSettings()
    results: List[ReadinessCheck] = []
    for check in checks:
        try:
            results.append(check(site, settings))
        except Exception as e:
            raise ReportGenerationError(f"Readiness check {check.__name__} could not be evaluated: {e}") from e
    return ReadinessReport(site_name=site.name, checks=results)
