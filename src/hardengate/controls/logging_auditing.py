"""Section 4: auditd and rsyslog configuration."""

from __future__ import annotations

from ..models.control import Control, HardeningParameters
from . import builders as b

RSYSLOG_CONF = "/etc/rsyslog.conf"
RSYSLOG_CIS_RULES = "/etc/rsyslog.d/60-cis-logging.conf"

LOGGING_RULES = """\
*.emerg                                 :omusrmsg:*
mail.*                                  -/var/log/mail
mail.info                               -/var/log/mail.info
mail.warning                            -/var/log/mail.warn
mail.err                                /var/log/mail.err
news.crit                               -/var/log/news/news.crit
news.err                                -/var/log/news/news.err
news.notice                             -/var/log/news/news.notice
*.=warning;*.=err                       -/var/log/warn
*.crit                                  /var/log/warn
*.*;mail.none;news.none                 -/var/log/messages
local0,local1.*                         -/var/log/localmessages
local2,local3.*                         -/var/log/localmessages
local4,local5.*                         -/var/log/localmessages
local6,local7.*                         -/var/log/localmessages
"""


def _file_create_mode_ok(value: str) -> bool:
    try:
        mode = int(value, 8)
    except ValueError:
        return False
    return not mode & 0o137


def controls(parameters: HardeningParameters) -> list[Control]:
    return [
        b.package_present("4.1.1", "4.1", "Ensure auditd is installed", "audit", level=2),
        b.service_enabled("4.1.2", "4.1", "Ensure auditd service is enabled and running", "auditd", level=2),
        b.directive_control(
            "4.2.1", "4.2", "Ensure rsyslog default file permissions configured",
            RSYSLOG_CONF, "$FileCreateMode", "0640", check=_file_create_mode_ok,
        ),
        b.file_content_control(
            "4.2.2", "4.2", "Ensure logging is configured", RSYSLOG_CIS_RULES, LOGGING_RULES, mode=0o644,
        ),
    ]
