"""
Tests for tracking code generation, customization and finalization.
"""

import pytest

from database.models import MarketingLink, UserRole
from referrals.tracking_codes import (
    TrackingCodeError,
    assign_tracking_code,
    backfill_tracking_codes,
    customize_tracking_code,
    find_profile_by_code,
    finalize_tracking_code,
    generate_initials,
    generate_unique_tracking_code,
    get_tracking_code,
    is_tracking_code_available,
    validate_custom_tracking_code,
)


def _link_codes(session, profile):
    return sorted(
        link.code for link in session.query(MarketingLink).filter_by(creator_id=profile.id)
    )


class TestInitials:

    def test_three_part_name(self):
        assert generate_initials("Ira", "D", "Watkins") == "idw"

    def test_accents_are_stripped(self):
        assert generate_initials("Ìra", "Dèan", "Wätkins") == "idw"

    def test_missing_middle_name(self):
        assert generate_initials("Jane", None, "Doe") == "jd"

    def test_nothing_usable_falls_back(self):
        assert generate_initials("123", None, "---") == "user"


class TestGeneration:

    def test_preparer_gets_initials(self, session):
        code = generate_unique_tracking_code(
            session, role=UserRole.TAX_PREPARER, first_name="Ira", middle_name="D", last_name="Watkins"
        )
        assert code == "idw"

    def test_preparer_initials_collision_adds_suffix(self, session, make_profile):
        make_profile(tracking_code="idw")
        make_profile(custom_tracking_code="IDW2")
        code = generate_unique_tracking_code(
            session, role=UserRole.TAX_PREPARER, first_name="Ira", middle_name="D", last_name="Watkins"
        )
        assert code == "idw3"

    def test_other_roles_get_prefixed_code(self, session):
        code = generate_unique_tracking_code(session, role=UserRole.AFFILIATE)
        prefix, digits = code.split("-")
        assert prefix == "TGP"
        assert len(digits) == 6 and digits.isdigit()

    def test_availability_is_case_insensitive(self, session, make_profile):
        make_profile(tracking_code="TGP-123456")
        assert not is_tracking_code_available(session, "tgp-123456")
        assert is_tracking_code_available(session, "tgp-654321")


class TestValidation:

    @pytest.mark.parametrize("code", ["ab", "a" * 21, "bad code", "-abc", "abc_", "123456", "admin"])
    def test_invalid_codes(self, code):
        valid, error = validate_custom_tracking_code(code)
        assert not valid
        assert error

    def test_valid_code(self):
        assert validate_custom_tracking_code("ira-taxes_2") == (True, None)


class TestAssignment:

    def test_assign_creates_referral_links(self, session, make_profile):
        preparer = make_profile(role=UserRole.TAX_PREPARER, first_name="Ira", last_name="Watkins")
        data = assign_tracking_code(session, preparer.id)

        assert data.code == "iw"
        assert data.can_customize
        assert not data.is_custom
        assert data.tracking_url.endswith("?ref=iw")
        assert _link_codes(session, preparer) == ["iw-appt", "iw-intake"]

    def test_assign_is_idempotent(self, session, make_profile):
        profile = make_profile(tracking_code="TGP-111111")
        data = assign_tracking_code(session, profile.id)
        assert data.code == "TGP-111111"

    def test_unknown_profile(self, session):
        from uuid import uuid4
        with pytest.raises(TrackingCodeError):
            assign_tracking_code(session, uuid4())

    def test_backfill(self, session, make_profile):
        make_profile(role=UserRole.AFFILIATE)
        make_profile(role=UserRole.CLIENT)
        make_profile(tracking_code="TGP-222222")

        updated, errors = backfill_tracking_codes(session)

        assert updated == 2
        assert errors == []


class TestCustomization:

    def test_customize_once(self, session, make_profile):
        profile = make_profile(role=UserRole.AFFILIATE)
        assign_tracking_code(session, profile.id)

        data = customize_tracking_code(session, profile.id, "IraTaxes")

        assert data.code == "IraTaxes"
        assert data.is_custom
        assert not data.can_customize
        assert _link_codes(session, profile) == ["irataxes-appt", "irataxes-intake"]

        with pytest.raises(TrackingCodeError, match="only be customized once"):
            customize_tracking_code(session, profile.id, "OtherCode")

    def test_taken_code_rejected(self, session, make_profile):
        make_profile(tracking_code="taken")
        profile = make_profile(role=UserRole.AFFILIATE, tracking_code="TGP-333333")
        with pytest.raises(TrackingCodeError, match="already taken"):
            customize_tracking_code(session, profile.id, "TAKEN")

    def test_username_is_not_available_as_code(self, session, make_profile):
        owner = make_profile(role=UserRole.AFFILIATE, username="amy")
        profile = make_profile(role=UserRole.AFFILIATE, tracking_code="TGP-333334")

        assert not is_tracking_code_available(session, "AMY")
        with pytest.raises(TrackingCodeError, match="already taken"):
            customize_tracking_code(session, profile.id, "AMY")
        assert find_profile_by_code(session, "amy").id == owner.id

    def test_finalized_code_cannot_change(self, session, make_profile):
        profile = make_profile(tracking_code="TGP-444444")
        finalize_tracking_code(session, profile.id)
        with pytest.raises(TrackingCodeError, match="finalized"):
            customize_tracking_code(session, profile.id, "newcode")

    def test_finalize_twice(self, session, make_profile):
        profile = make_profile(tracking_code="TGP-555555")
        data = finalize_tracking_code(session, profile.id)
        assert data.is_finalized
        assert not data.can_customize
        with pytest.raises(TrackingCodeError):
            finalize_tracking_code(session, profile.id)

    def test_finalize_without_code(self, session, make_profile):
        profile = make_profile()
        with pytest.raises(TrackingCodeError, match="No tracking code"):
            finalize_tracking_code(session, profile.id)


class TestLookup:

    def test_vanity_code_wins(self, session, make_profile):
        profile = make_profile(tracking_code="TGP-666666", custom_tracking_code="vanity")
        assert get_tracking_code(session, profile.id).code == "vanity"

    def test_find_by_any_identifier(self, session, make_profile):
        profile = make_profile(username="ira", tracking_code="TGP-777777", custom_tracking_code="IraW")
        assert find_profile_by_code(session, "IRA").id == profile.id
        assert find_profile_by_code(session, "tgp-777777").id == profile.id
        assert find_profile_by_code(session, " iraw ").id == profile.id
        assert find_profile_by_code(session, "") is None
        assert find_profile_by_code(session, None) is None

    def test_username_takes_precedence_over_codes(self, session, make_profile):
        # Rows that collide from before usernames were reserved
        vanity = make_profile(tracking_code="TGP-888888", custom_tracking_code="amy")
        owner = make_profile(username="amy")
        make_profile(tracking_code="ira")
        preparer = make_profile(custom_tracking_code="ira")

        assert find_profile_by_code(session, "amy").id == owner.id
        assert find_profile_by_code(session, "IRA").id == preparer.id
        assert find_profile_by_code(session, "tgp-888888").id == vanity.id


class TestTrackingCodeApi:

    def test_requires_auth(self, client):
        response = client.get("/api/tracking-code")
        assert response.status_code == 401

    def test_assign_customize_finalize(self, client, session, make_profile, auth_headers):
        profile = make_profile(role=UserRole.AFFILIATE)
        session.commit()
        headers = auth_headers(profile)

        assert client.get("/api/tracking-code", headers=headers).json()["data"] is None

        assigned = client.post("/api/tracking-code", headers=headers)
        assert assigned.status_code == 200
        assert assigned.json()["data"]["code"].startswith("TGP-")

        customized = client.post("/api/tracking-code/customize", json={"code": "mycode"}, headers=headers)
        assert customized.status_code == 200
        assert customized.json()["data"]["code"] == "mycode"

        again = client.post("/api/tracking-code/customize", json={"code": "other"}, headers=headers)
        assert again.status_code == 400

        finalized = client.post("/api/tracking-code/finalize", headers=headers)
        assert finalized.status_code == 200
        assert finalized.json()["data"]["is_finalized"] is True

        twice = client.post("/api/tracking-code/finalize", headers=headers)
        assert twice.status_code == 409

    def test_check_availability(self, client, session, make_profile, auth_headers):
        make_profile(tracking_code="taken")
        profile = make_profile()
        session.commit()

        taken = client.get("/api/tracking-code/check", params={"code": "taken"}, headers=auth_headers(profile))
        assert taken.json()["available"] is False

        invalid = client.get("/api/tracking-code/check", params={"code": "x"}, headers=auth_headers(profile))
        assert invalid.json()["valid"] is False
        assert invalid.json()["error"]
