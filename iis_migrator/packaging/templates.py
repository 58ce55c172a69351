"""
Text templates for the deployment bundle.

Placeholders are replaced literally and case-sensitively by
:func:`iis_migrator.packaging.bundle.render_template`; there is no templating
language.  ``{{PACKAGE_SECRET}}`` may only appear in the install script.
"""

SITE_NAME_TOKEN = "{{SITE_NAME}}"
SECRET_TOKEN = "{{PACKAGE_SECRET}}"

MANIFEST_TEMPLATE = """{
  "manifestVersion": 1,
  "deployments": {
    "custom": [
      {
        "name": "{{SITE_NAME}}",
        "description": "Site {{SITE_NAME}} migrated from IIS",
        "scripts": {
          "install": {"file": "scripts/install"},
          "postInstall": {"file": "scripts/post_install"},
          "restart": {"file": "scripts/restart"},
          "uninstall": {"file": "scripts/uninstall"}
        }
      }
    ]
  }
}
"""

INSTALL_TEMPLATE = r"""$ErrorActionPreference = "Stop"
$siteName = "{{SITE_NAME}}"
$package = Join-Path $PSScriptRoot "..\payload.zip"
$msdeploy = "C:\Program Files\IIS\Microsoft Web Deploy V3\msdeploy.exe"

& $msdeploy -verb:sync "-source:package=$package,decryptPassword={{PACKAGE_SECRET}}" "-dest:appHostConfig=$siteName"
if ($LASTEXITCODE -ne 0) {
    throw "Installing site $siteName failed with exit code $LASTEXITCODE"
}
"""

POST_INSTALL_TEMPLATE = r"""$ErrorActionPreference = "Stop"
$siteName = "{{SITE_NAME}}"
Import-Module WebAdministration

# The platform serves the site on port 80; drop bindings carried over from the old host.
Get-WebBinding -Name $siteName | Where-Object { $_.protocol -ne "http" } | Remove-WebBinding
Set-WebBinding -Name $siteName -BindingInformation (Get-WebBinding -Name $siteName -Protocol http).bindingInformation -PropertyName Port -Value 80
Start-Website -Name $siteName
"""

RESTART_TEMPLATE = r"""$ErrorActionPreference = "Stop"
$siteName = "{{SITE_NAME}}"
Import-Module WebAdministration

Stop-Website -Name $siteName
$pool = (Get-Item "IIS:\Sites\$siteName").applicationPool
Restart-WebAppPool -Name $pool
Start-Website -Name $siteName
"""

UNINSTALL_TEMPLATE = r"""$ErrorActionPreference = "Stop"
$siteName = "{{SITE_NAME}}"
Import-Module WebAdministration

if (Test-Path "IIS:\Sites\$siteName") {
    Stop-Website -Name $siteName
    Remove-Website -Name $siteName
}
"""

# Lifecycle script name -> (template, receives the one-time secret)
LIFECYCLE_TEMPLATES = {
    "install": (INSTALL_TEMPLATE, True),
    "post_install": (POST_INSTALL_TEMPLATE, False),
    "restart": (RESTART_TEMPLATE, False),
    "uninstall": (UNINSTALL_TEMPLATE, False),
}
