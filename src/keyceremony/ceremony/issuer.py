"""Challenge issuance and option payload construction."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from keyceremony.ceremony.errors import NotRegistered
from keyceremony.ceremony.ids import new_challenge
from keyceremony.ceremony.store import CredentialStore
from keyceremony.ceremony.types import CeremonyType, UserIdentity, utcnow
from keyceremony.ceremony.webauthn import (
    descriptors,
    make_authentication_options,
    make_registration_options,
)
from keyceremony.config import Settings

logger = logging.getLogger(__name__)


class ChallengeIssuer:
    """Produces ceremony-scoped challenges and records them as the user's pending challenge."""

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock

    async def issue_registration_options(self, username: object) -> dict[str, Any]:
        """Return creation options for *username* and store the challenge.

        Raises UsernameRequired for a blank or over-long username.
        """
        identity = UserIdentity.from_username(username)
        state = await self.store.get_or_create_user(identity)

        challenge = new_challenge(self.settings.challenge_bytes)
        options = make_registration_options(
            rp_id=self.settings.effective_rp_id(),
            rp_name=self.settings.rp_name,
            user_id=identity.handle,
            user_name=identity.username,
            user_display_name=identity.username,
            challenge=challenge,
            settings=self.settings,
            exclude_credentials=descriptors(state.credentials.values()),
        )
        await self.store.set_pending_challenge(
            identity, challenge, CeremonyType.REGISTRATION, issued_at=self.clock()
        )
        logger.info(
            "registration challenge issued for %s (%d existing credentials)",
            identity.username,
            len(state.credentials),
        )
        return options

    async def issue_authentication_options(self, username: object) -> dict[str, Any]:
        """Return request options for *username* and store the challenge.

        Raises UsernameRequired for a bad username and NotRegistered when the
        user holds no credentials; in that case nothing is stored.
        """
        identity = UserIdentity.from_username(username)
        credentials = await self.store.list_credentials(identity)
        if not credentials:
            raise NotRegistered(f"{identity.username} has no registered credentials")

        challenge = new_challenge(self.settings.challenge_bytes)
        options = make_authentication_options(
            rp_id=self.settings.effective_rp_id(),
            challenge=challenge,
            settings=self.settings,
            allow_credentials=descriptors(credentials),
        )
        await self.store.set_pending_challenge(
            identity, challenge, CeremonyType.AUTHENTICATION, issued_at=self.clock()
        )
        logger.info(
            "authentication challenge issued for %s (%d allowed credentials)",
            identity.username,
            len(credentials),
        )
        return options
