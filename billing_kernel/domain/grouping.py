"""
Payer grouping and per-payer lesson deduplication.

Pure, no I/O.  Given the participations produced by the lesson selector,
builds one PayerGroup per distinct payer (guardian or self-paying student).
Two siblings sharing a lesson under the same guardian produce a single
entry; the same lesson under two different payers appears once in each.
"""

from collections.abc import Iterable

from billing_kernel.domain.dtos import BillableParticipation, PayerGroup


def group_by_payer(
    participations: Iterable[BillableParticipation],
) -> dict[str, PayerGroup]:
    """
    Map ``payer_key -> PayerGroup`` preserving first-seen order.

    Groups are only created when a participation arrives for them, so no
    group is ever empty.
    """
    groups: dict[str, PayerGroup] = {}
    for participation in participations:
        key = participation.payer.key
        group = groups.get(key)
        if group is None:
            group = PayerGroup(payer=participation.payer)
            groups[key] = group
        group.add(participation)
    return groups
