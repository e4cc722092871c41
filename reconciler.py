"""
Identity reconciliation.

A request carrying an (email, phoneNumber) pair goes through four stages,
each reading only what the previous one produced:

1. match         - live contacts sharing the email or the phone, and the
                   primaries they belong to
2. resolve_group - elect the oldest primary; demote the others and re-parent
                   their secondaries onto it
3. fill_gap      - add a secondary when the pair brings an email or phone the
                   group has not seen
4. build_response - the consolidated view of the group

`reconcile` runs all four inside one transaction.
"""
import logging
from typing import List, Optional, Tuple

from pydantic import BaseModel

from contact_store import ContactStore
from db_models import Contact, ContactResponse, FinalResponse, LinkPrecedence
from db_setup import transaction
from errors import IntegrityViolation, ValidationError

logger = logging.getLogger(__name__)


class MatchResult(BaseModel):
    contacts: List[Contact]
    # First-seen order, no duplicates
    candidate_ids: List[int]


def validate_query(email: Optional[str], phone: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    # Surrounding whitespace is never part of an email or phone number
    email = (email.strip() or None) if email else None
    phone = (phone.strip() or None) if phone else None
    if email is None and phone is None:
        raise ValidationError("Either email or phoneNumber must be provided")
    return email, phone


def match(store: ContactStore, email: str = None, phone: str = None) -> MatchResult:
    contacts = store.find_by_attributes(email, phone)

    candidate_ids = {}
    for contact in contacts:
        if contact.is_primary:
            candidate_ids.setdefault(contact.id)
        elif contact.linkedId is not None:
            candidate_ids.setdefault(contact.linkedId)

    if contacts and not candidate_ids:
        raise IntegrityViolation(
            f"Contacts {[c.id for c in contacts]} match but none leads to a primary"
        )

    logger.debug(f"Matched {len(contacts)} contacts across primaries {list(candidate_ids)}")
    return MatchResult(contacts=contacts, candidate_ids=list(candidate_ids))


def elect_primary(primaries: List[Contact]) -> Tuple[Contact, List[Contact]]:
    """Oldest wins; equal timestamps fall back to the lower id."""
    if not primaries:
        raise ValueError("Cannot elect a primary from an empty set")
    ordered = sorted(primaries, key=lambda c: c.sort_key)
    return ordered[0], ordered[1:]


def resolve_group(store: ContactStore, candidate_ids: List[int]) -> Contact:
    primaries = store.find_by_ids(candidate_ids)

    # Candidates were read under the same write lock, so a gap here is a broken link graph
    found = {p.id for p in primaries if p.is_primary}
    missing = sorted(set(candidate_ids) - found)
    if missing:
        raise IntegrityViolation(
            f"Contacts link to {missing}, which are not live primary contacts"
        )

    canonical, losers = elect_primary(primaries)
    if not losers:
        return canonical

    loser_ids = [loser.id for loser in losers]

    store.update_many(
        {"id": loser_ids},
        {"linkPrecedence": LinkPrecedence.SECONDARY, "linkedId": canonical.id},
    )
    reparented = store.update_many({"linkedId": loser_ids}, {"linkedId": canonical.id})

    broken = store.find_broken_links([canonical.id] + loser_ids)
    if broken:
        raise IntegrityViolation(
            f"Merge into {canonical.id} left contacts {[c.id for c in broken]} without a primary"
        )

    logger.info(
        f"Merged primaries {loser_ids} into {canonical.id} "
        f"({reparented} secondaries re-parented)"
    )
    return canonical


def needs_new_secondary(group: List[Contact], email: str = None, phone: str = None) -> bool:
    emails = {c.email for c in group}
    phones = {c.phoneNumber for c in group}

    has_new_email = email is not None and email not in emails
    has_new_phone = phone is not None and phone not in phones
    if not (has_new_email or has_new_phone):
        return False

    combination_exists = any(c.email == email and c.phoneNumber == phone for c in group)
    return not combination_exists


def fill_gap(store: ContactStore, primary: Contact, email: str = None, phone: str = None) -> List[Contact]:
    group = store.find_group_members(primary.id)
    if not group:
        raise IntegrityViolation(f"Primary {primary.id} disappeared during reconciliation")

    if needs_new_secondary(group, email, phone):
        contact = store.create_contact(
            email=email,
            phone=phone,
            linked_id=primary.id,
            precedence=LinkPrecedence.SECONDARY,
        )
        logger.info(f"Created secondary contact {contact.id} under primary {primary.id}")
        group.append(contact)

    return group


def build_response(group: List[Contact]) -> FinalResponse:
    primary = group[0]
    if not primary.is_primary:
        raise IntegrityViolation(f"Group head {primary.id} is not a primary contact")

    emails = dict.fromkeys([primary.email] if primary.email else [])
    phone_numbers = dict.fromkeys([primary.phoneNumber] if primary.phoneNumber else [])
    for contact in group[1:]:
        if contact.email:
            emails.setdefault(contact.email)
        if contact.phoneNumber:
            phone_numbers.setdefault(contact.phoneNumber)

    return FinalResponse(
        contact=ContactResponse(
            primaryContactId=primary.id,
            emails=list(emails),
            phoneNumbers=list(phone_numbers),
            secondaryContactIds=[c.id for c in group[1:]],
        )
    )


def identify_contact(store: ContactStore, email: str = None, phone: str = None) -> FinalResponse:
    """Run one reconciliation against an already-open unit of work."""
    email, phone = validate_query(email, phone)

    result = match(store, email, phone)

    if not result.candidate_ids:
        contact = store.create_contact(email=email, phone=phone, precedence=LinkPrecedence.PRIMARY)
        logger.info(f"Created primary contact {contact.id}")
        return build_response([contact])

    primary = resolve_group(store, result.candidate_ids)
    group = fill_gap(store, primary, email, phone)
    return build_response(group)


def reconcile(email: str = None, phone: str = None, db_path: str = None) -> FinalResponse:
    # Reject before a connection is opened
    email, phone = validate_query(email, phone)

    with transaction(db_path) as conn:
        return identify_contact(ContactStore(conn), email, phone)
