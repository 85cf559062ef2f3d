from __future__ import annotations

from typing import List, NamedTuple, Optional, TypedDict, Union

# NOTE: This module is intentionally Python 3.9 compatible.
# - No PEP 604 unions (A | B)
# - No typing.NotRequired / Required (3.11+) to avoid an extra dependency.


class ArchiveLocation(NamedTuple):
    """A message part written to temporary storage"""

    path: str
    kind: str


class AggregatePolicyPublished(TypedDict):
    domain: Optional[str]
    adkim: Optional[str]
    aspf: Optional[str]
    p: Optional[str]
    sp: Optional[str]
    pct: Optional[int]


class AggregateRecord(TypedDict):
    source_ip: str
    count: Optional[int]
    disposition: str
    dkim_align: str
    spf_align: str
    reason: Optional[str]
    dkim_domain: Optional[str]
    dkim_result: str
    spf_domain: Optional[str]
    spf_result: str
    header_from: Optional[str]
    has_auth_results: bool


class AggregateReport(TypedDict):
    org_name: Optional[str]
    report_id: Optional[str]
    email: Optional[str]
    extra_contact_info: Optional[str]
    begin: Optional[int]
    end: Optional[int]
    policy_published: AggregatePolicyPublished
    raw_xml: str
    records: List[AggregateRecord]


class SMTPTLSFailureDetails(TypedDict):
    sending_mta_ip: Optional[str]
    receiving_ip: Optional[str]
    receiving_mx_hostname: Optional[str]
    result_type: Optional[str]
    failed_session_count: Optional[int]


class SMTPTLSReport(TypedDict):
    organization_name: Optional[str]
    report_id: Optional[str]
    contact_info: Optional[str]
    begin_date: Optional[str]
    end_date: Optional[str]
    policy_mode: str
    policy_domain: Optional[str]
    successful_session_count: Optional[int]
    failed_session_count: int
    raw_json: str
    failure_details: List[SMTPTLSFailureDetails]


Report = Union[AggregateReport, SMTPTLSReport]
