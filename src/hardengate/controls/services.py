"""Section 2: inetd, special purpose services and service clients."""

from __future__ import annotations

from ..models.control import Control, HardeningParameters
from . import builders as b
from . import primitives as p

POSTFIX_MAIN_CF = "/etc/postfix/main.cf"

# (id, description, package) in benchmark order
UNWANTED_SERVERS = [
    ("2.2.3", "Ensure Avahi Server is not installed", "avahi"),
    ("2.2.4", "Ensure CUPS is not installed", "cups"),
    ("2.2.5", "Ensure DHCP Server is not installed", "dhcp-server"),
    ("2.2.6", "Ensure DNS Server is not installed", "bind"),
    ("2.2.7", "Ensure NFS is not installed", "nfs-utils"),
    ("2.2.8", "Ensure rpcbind is not installed", "rpcbind"),
    ("2.2.9", "Ensure LDAP server is not installed", "openldap-servers"),
    ("2.2.10", "Ensure FTP Server is not installed", "vsftpd"),
    ("2.2.11", "Ensure HTTP server is not installed", "httpd"),
    ("2.2.12", "Ensure IMAP and POP3 server is not installed", "dovecot"),
    ("2.2.13", "Ensure Samba is not installed", "samba"),
    ("2.2.14", "Ensure HTTP Proxy Server is not installed", "squid"),
    ("2.2.15", "Ensure SNMP Server is not installed", "net-snmp"),
]

UNWANTED_CLIENTS = [
    ("2.3.1", "Ensure NIS Client is not installed", "ypbind"),
    ("2.3.2", "Ensure rsh client is not installed", "rsh"),
    ("2.3.3", "Ensure talk client is not installed", "talk"),
    ("2.3.4", "Ensure telnet client is not installed", "telnet"),
    ("2.3.5", "Ensure LDAP client is not installed", "openldap-clients"),
]


def controls(parameters: HardeningParameters) -> list[Control]:
    result = [
        b.package_absent("2.1.1", "2.1", "Ensure xinetd is not installed", "xinetd"),
        b.package_present("2.2.1", "2.2", "Ensure time synchronization is in use", "chrony"),
        b.service_enabled("2.2.1.1", "2.2", "Ensure chrony is configured", "chronyd"),
        b.package_absent(
            "2.2.2", "2.2", "Ensure X Window System is not installed", "xorg-x11-server-common", level=2,
        ),
    ]
    result += [b.package_absent(cid, "2.2", description, package) for cid, description, package in UNWANTED_SERVERS]
    result.append(
        b.directive_control(
            "2.2.16", "2.2", "Ensure mail transfer agent is configured for local-only mode",
            POSTFIX_MAIN_CF, "inet_interfaces", "loopback-only", sep=" = ",
            check=lambda v: v in ("loopback-only", "localhost"),
            precondition=lambda target: p.path_exists(target, POSTFIX_MAIN_CF),
        )
    )
    result += [b.package_absent(cid, "2.3", description, package) for cid, description, package in UNWANTED_CLIENTS]
    return result
