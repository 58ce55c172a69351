import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from iis_migrator.assessment.readiness import (
    CHECKS,
    ReadinessSettings,
    check_application_pool_isolation,
    check_process_identity,
    evaluate_readiness,
)
from iis_migrator.extractors.iis_config import Application, ApplicationPool, Binding, SiteConfig
from iis_migrator.models.records import ReadinessCheck, ReadinessReport
from iis_migrator.utils.errors import ReportGenerationError


def clean_site(**overrides):
    site = SiteConfig(
        name="Shop",
        bindings=[Binding("http", "*:80:"), Binding("https", "*:443:")],
        applications=[Application("/", "ShopPool", "/srv/shop")],
        application_pools={"ShopPool": ApplicationPool("ShopPool", "v4.0", "ApplicationPoolIdentity")},
    )
    for key, value in overrides.items():
        setattr(site, key, value)
    return site


def by_name(report):
    return {check.name: check for check in report.checks}


def test_clean_site_passes_every_check():
    report = evaluate_readiness(clean_site())
    assert [c.name for c in report.checks] == [
        "ApplicationPoolIsolation",
        "ManagedRuntimeVersions",
        "IsapiFilters",
        "WindowsAuthentication",
        "BindingCardinality",
        "NonHttpProtocols",
        "ProcessIdentity",
    ]
    assert all(c.result for c in report.checks)
    assert report.has_incompatibility is False
    assert report.site_name == "Shop"


def test_two_http_bindings_only_fail_binding_cardinality():
    site = clean_site(bindings=[Binding("http", "*:80:"), Binding("http", "*:8080:")])
    checks = by_name(evaluate_readiness(site))
    cardinality = checks.pop("BindingCardinality")
    assert cardinality.result is False
    assert "2 http bindings" in cardinality.log
    assert all(check.result for check in checks.values())


def test_windows_authentication_is_a_hard_failure():
    checks = by_name(evaluate_readiness(clean_site(windows_authentication=True)))
    assert checks["WindowsAuthentication"].result is False


def test_non_http_protocol_and_isapi_filters_fail():
    site = clean_site(bindings=[Binding("http", "*:80:"), Binding("net.tcp", "808:*")], isapi_filters=["rewrite"])
    checks = by_name(evaluate_readiness(site))
    assert checks["NonHttpProtocols"].result is False
    assert "net.tcp" in checks["NonHttpProtocols"].log
    assert checks["IsapiFilters"].result is False
    assert checks["BindingCardinality"].result is True


def test_unsupported_runtime_version_fails():
    site = clean_site(application_pools={"ShopPool": ApplicationPool("ShopPool", "v1.1")})
    checks = by_name(evaluate_readiness(site))
    assert checks["ManagedRuntimeVersions"].result is False
    assert "v1.1" in checks["ManagedRuntimeVersions"].log


def test_pool_isolation_reports_by_default_and_fails_over_limit():
    site = clean_site(
        applications=[Application("/", "ShopPool"), Application("/a", "ShopPool"), Application("/b", "ShopPool")]
    )
    informational = check_application_pool_isolation(site, ReadinessSettings())
    assert informational.result is True
    assert "3 application(s)" in informational.log

    strict = check_application_pool_isolation(site, ReadinessSettings(max_applications_per_pool=2))
    assert strict.result is False


def test_privileged_identity_is_informational_unless_disallowed():
    site = clean_site(application_pools={"ShopPool": ApplicationPool("ShopPool", "v4.0", "LocalSystem")})
    assert check_process_identity(site, ReadinessSettings()).result is True
    assert check_process_identity(site, ReadinessSettings(allow_privileged_identity=False)).result is False


def test_incompatibility_flag_is_or_of_negated_results():
    for results in ([True, True], [True, False], [False, False], []):
        report = ReadinessReport(
            site_name="s",
            checks=[ReadinessCheck(name=f"c{i}", description="", result=r) for i, r in enumerate(results)],
        )
        assert report.has_incompatibility == any(not r for r in results)


def test_error_while_evaluating_aborts_the_report():
    def broken(site, settings):
        raise KeyError("missing pool")

    with pytest.raises(ReportGenerationError):
        evaluate_readiness(clean_site(), checks=list(CHECKS) + [broken])


def test_render_lists_failures():
    site = clean_site(windows_authentication=True)
    text = evaluate_readiness(site).render()
    assert "[FAIL] WindowsAuthentication" in text
    assert "1 incompatibility(ies) found." in text
