"""
Unit tests for the organization cache and personal team provisioning
"""
import asyncio

import pytest

from praxis_bff.exceptions import DirectoryServiceError
from praxis_bff.organizations import (
    OrganizationCache,
    personal_external_id,
    personal_team_name,
    validate_domain_id,
    validate_invitation_id,
    validate_membership_id,
    validate_team_id,
)
from praxis_bff.session_data import DEFAULT_TEAM_COLOUR, Subject


@pytest.mark.asyncio
async def test_lists_organizations_in_membership_order(directory, alice, alice_teams):
    organizations = await OrganizationCache(directory).list_for_subject(alice)

    assert [org.id for org in organizations] == ["org_alice_personal", "org_research"]
    assert directory.create_organization_calls == 0


@pytest.mark.asyncio
async def test_inactive_memberships_are_skipped(directory, alice, alice_teams):
    archived = directory.add_organization("Archive", org_id="org_archive")
    directory.add_membership(alice.id, archived.id, status="inactive")

    organizations = await OrganizationCache(directory).list_for_subject(alice)

    assert "org_archive" not in [org.id for org in organizations]


@pytest.mark.asyncio
async def test_provisions_personal_organization_for_new_subject(directory, alice):
    organizations = await OrganizationCache(directory).list_for_subject(alice)

    assert len(organizations) == 1
    personal = organizations[0]
    assert personal.name == "Alice's Team"
    assert personal.is_personal
    assert personal.colour == DEFAULT_TEAM_COLOUR
    assert personal.metadata["createdBy"] == alice.id
    assert personal.external_id == personal_external_id(alice.id)

    memberships = await directory.list_memberships(user_id=alice.id)
    assert [(m.organization_id, m.role.slug) for m in memberships] == [(personal.id, "admin")]


@pytest.mark.asyncio
async def test_concurrent_first_requests_share_one_personal_organization(directory, alice):
    cache = OrganizationCache(directory)

    results = await asyncio.gather(*(cache.list_for_subject(alice) for _ in range(5)))

    assert {orgs[0].id for orgs in results} == {results[0][0].id}
    assert len(directory.personal_organizations_of(alice.id)) == 1
    assert directory.create_organization_calls == 1


@pytest.mark.asyncio
async def test_separate_workers_converge_on_one_personal_organization(directory, alice):
    # Two caches model two worker processes: no shared lock, only the directory.
    first, second = OrganizationCache(directory), OrganizationCache(directory)

    a, b = await asyncio.gather(first.list_for_subject(alice), second.list_for_subject(alice))

    assert a[0].id == b[0].id
    assert len(directory.personal_organizations_of(alice.id)) == 1
    assert len(await directory.list_memberships(user_id=alice.id)) == 1


@pytest.mark.asyncio
async def test_directory_failure_propagates(directory, alice):
    directory.fail_with = DirectoryServiceError(503, "Directory unreachable")

    with pytest.raises(DirectoryServiceError):
        await OrganizationCache(directory).list_for_subject(alice)


def test_personal_team_name_falls_back_to_subject_id():
    assert personal_team_name(Subject(id="user_x", email="x@example.com", first_name="  ")) == "Personal Team (user_x)"
    assert personal_team_name(Subject(id="user_y", email="y@example.com", first_name="Yan")) == "Yan's Team"


@pytest.mark.parametrize("validator, good, bad", [
    (validate_team_id, "org_01H", "team_01H"),
    (validate_domain_id, "org_domain_01H", "org_01H"),
    (validate_invitation_id, "invitation_01H", "invite_01H"),
    (validate_membership_id, "om_01H", "org_01H"),
])
def test_id_validators(validator, good, bad):
    assert validator(good)
    assert not validator(bad)
    assert not validator("")
    assert not validator(None)
