"""
Regular expressions for transient errors of DISA STIG rules.

Errored check result messages matching one of these expressions are
caused by the scan infrastructure rather than the inspected cluster
state, so the rule that produced them may be re-run.
"""

from __future__ import annotations

import re

from kubestig.kubernetes.opspod import OPS_POD_PREFIX

OPS_POD_NOT_FOUND = re.compile(rf'(?i)pods? "{OPS_POD_PREFIX}-[a-z0-9-]+" not found')
CONTAINER_NOT_FOUND_ON_NODE = re.compile(r"(?i)container with name .+ not \(yet\) found on node")
CONTAINER_FILE_NOT_FOUND_ON_NODE = re.compile(r"(?i)could not find file .+ in container with id .+")
CONTAINER_NOT_READY = re.compile(r"(?i)container with name .+ not \(yet\) in status ready")
