"""Helpers for names, record types and record collections."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import dns.flags
import dns.message
import dns.rdataclass
import dns.rrset

_RECORD_TYPES = {
    1: "A",
    2: "NS",
    5: "CNAME",
    6: "SOA",
    12: "PTR",
    15: "MX",
    16: "TXT",
    17: "RP",
    18: "AFSDB",
    24: "SIG",
    25: "KEY",
    28: "AAAA",
    29: "LOC",
    33: "SRV",
    35: "NAPTR",
    36: "KX",
    37: "CERT",
    39: "DNAME",
    41: "OPT",
    43: "DS",
    44: "SSHFP",
    45: "IPSECKEY",
    46: "RRSIG",
    47: "NSEC",
    48: "DNSKEY",
    49: "DHCID",
    50: "NSEC3",
    51: "NSEC3PARAM",
    52: "TLSA",
    53: "SMIMEA",
    55: "HIP",
    57: "NINFO",
    59: "CDS",
    60: "CDNSKEY",
    61: "OPENPGPKEY",
    62: "CSYNC",
    63: "ZONEMD",
    64: "SVCB",
    65: "HTTPS",
    99: "SPF",
    100: "UINFO",
    101: "UID",
    102: "GID",
    103: "UNSPEC",
    108: "EUI48",
    109: "EUI64",
    249: "TKEY",
    250: "TSIG",
    251: "IXFR",
    252: "AXFR",
    255: "ANY",
    256: "URI",
    257: "CAA",
    32768: "TA",
    32769: "DLV",
}

_RCODES = {
    0: "NoError",
    1: "FormErr",
    2: "ServFail",
    3: "NXDomain",
    4: "NotImp",
    5: "Refused",
    6: "YXDomain",
    7: "YXRRSet",
    8: "NXRRSet",
    9: "NotAuth",
    10: "NotZone",
    16: "BADSIG",
    17: "BADKEY",
    18: "BADTIME",
    19: "BADMODE",
    20: "BADNAME",
    21: "BADALG",
    22: "BADTRUNC",
    23: "BADCOOKIE",
}


@dataclass(frozen=True)
class Question:
    """A query's name, type and class."""

    name: str
    qtype: int
    qclass: int = dns.rdataclass.IN


def type_to_string(rrtype: int) -> str:
    """Mnemonic of a record type, or "unknown"."""
    return _RECORD_TYPES.get(rrtype, "unknown")


def rcode_to_string(rcode: int) -> str:
    """Mnemonic of a response code, or "unknown"."""
    return _RCODES.get(rcode, "unknown")


def is_set_do(msg: dns.message.Message) -> bool:
    """True if the message carries EDNS with the DNSSEC OK bit set."""
    return msg.edns >= 0 and bool(msg.ednsflags & dns.flags.DO)


def _is_fqdn(name: str) -> bool:
    if not name.endswith("."):
        return False
    backslashes = len(name) - 1 - len(name[:-1].rstrip("\\"))
    return backslashes % 2 == 0


def canonical_name(name: str) -> str:
    """Lower-cased, fully qualified form of a name."""
    name = name.lower()
    return name if _is_fqdn(name) else name + "."


def names_equal(first: str, second: str) -> bool:
    return canonical_name(first) == canonical_name(second)


def label_indexes(name: str) -> list[int]:
    """Start offset of each label in a name; empty for the root."""
    if name in ("", "."):
        return []
    indexes = [0]
    position, length = 0, len(name)
    while position < length:
        char = name[position]
        if char == "\\":
            position += 2
            continue
        if char == "." and position + 1 < length:
            indexes.append(position + 1)
        position += 1
    return indexes


def count_labels(name: str) -> int:
    return len(label_indexes(name))


def is_subdomain(parent: str, child: str) -> bool:
    """True if child equals parent or lies below it."""
    parent = canonical_name(parent)
    child = canonical_name(child)
    if parent == ".":
        return True
    return any(child[index:] == parent for index in label_indexes(child))


def records_of_type_exist(rrsets: Iterable[dns.rrset.RRset], rdtype: int) -> bool:
    return any(rrset.rdtype == rdtype for rrset in rrsets)


def remove_records_of_type(
    rrsets: Iterable[dns.rrset.RRset], rdtype: int
) -> list[dns.rrset.RRset]:
    return [rrset for rrset in rrsets if rrset.rdtype != rdtype]


def extract_records_of_type(
    rrsets: Iterable[dns.rrset.RRset], rdtype: int
) -> list[dns.rrset.RRset]:
    return [rrset for rrset in rrsets if rrset.rdtype == rdtype]


def records_of_name_and_type_exist(
    rrsets: Iterable[dns.rrset.RRset], name: str, rdtype: int
) -> bool:
    wanted = canonical_name(name)
    return any(
        rrset.rdtype == rdtype and canonical_name(rrset.name.to_text()) == wanted
        for rrset in rrsets
    )