"""End-to-end flows through the session authority with a settable clock."""

import asyncio

import pytest

from sessionauth.service.magic_link import MagicLinkCodec


class TestPasswordLogin:
    async def test_correct_password_yields_two_distinct_tokens(self, authority, test_account):
        pair = await authority.login("user@example.com", "correctpw")

        assert pair is not None
        assert pair.access_token and pair.refresh_token
        assert pair.access_token != pair.refresh_token

    async def test_wrong_password_fails(self, authority, test_account):
        assert await authority.login("user@example.com", "wrongpw") is None

    async def test_unknown_identifier_looks_like_wrong_password(self, authority, test_account):
        unknown = await authority.login("ghost@example.com", "correctpw")
        mismatch = await authority.login("user@example.com", "wrongpw")

        assert unknown is None and mismatch is None

    @pytest.mark.parametrize(
        "identifier,secret",
        [
            ("not-an-email", "correctpw"),
            ("user@example.com", ""),
            (None, "correctpw"),
            ("user@example.com", "x" * 1025),
        ],
    )
    async def test_malformed_input_fails(self, authority, test_account, identifier, secret):
        assert await authority.login(identifier, secret) is None


class TestSessionLifecycle:
    async def test_logout_revokes_before_natural_expiry(self, authority, clock, test_account):
        pair = await authority.login("user@example.com", "correctpw")

        clock.advance(minutes=14)
        assert await authority.verify_session(pair.access_token) is True

        clock.advance(seconds=1)
        assert await authority.delete_session(pair.access_token) is True
        assert await authority.verify_session(pair.access_token) is False

    async def test_access_token_expires_at_15_minutes(self, authority, clock, test_account):
        pair = await authority.login("user@example.com", "correctpw")

        clock.advance(minutes=15)

        assert await authority.verify_session(pair.access_token) is False

    async def test_refresh_after_access_expiry(self, authority, clock, test_account):
        pair = await authority.login("user@example.com", "correctpw")
        clock.advance(minutes=20)

        new_access = await authority.refresh_session(pair.refresh_token)

        assert new_access is not None
        assert await authority.verify_session(new_access) is True
        assert await authority.refresh_session(pair.refresh_token) is None

    async def test_racing_verify_and_delete(self, authority, test_account):
        pair = await authority.login("user@example.com", "correctpw")

        verified, deleted = await asyncio.gather(
            authority.verify_session(pair.access_token),
            authority.delete_session(pair.access_token),
        )

        # either ordering is acceptable; the end state is revoked
        assert verified in (True, False)
        assert deleted is True
        assert await authority.verify_session(pair.access_token) is False


class TestMagicLinkFlow:
    @pytest.mark.parametrize("email", ["a@b.com", "first.last+tag@example.org", "ünï@example.de"])
    def test_codec_round_trip(self, settings, email):
        codec = MagicLinkCodec(settings.magic_link_secret)
        for t0 in (0, 1_717_243_200_000):
            assert codec.redeem(codec.issue(email, t0), t0) == email

    async def test_redeem_then_create_session(self, authority, account_store, test_account):
        token = authority.issue_magic_link("user@example.com")

        email = authority.redeem_magic_link(token)
        record = await account_store.find_credential_by_identifier(email)
        pair = await authority.create_session(record.id)

        assert email == "user@example.com"
        assert await authority.verify_session(pair.access_token) is True
