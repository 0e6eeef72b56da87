"""UserWorkspace: every live controller of one signed-in user.

One authenticated client feeds the quiz flow, the results aggregator, the
notification feed with its shared unread counter, the profile resolver, the
onboarding wizard and the studio decks. The workspace store keeps one per
user and closes it on sign-out or after the idle TTL.

Tier 3 orchestration module: wires the per-user controllers together.
"""

import logging

import httpx

from dailymir.client import AuthenticatedClient, SessionAccessor
from dailymir.config import Settings
from dailymir.hooks.interfaces import AuthClient
from dailymir.notifications.api import NotificationsApi
from dailymir.notifications.counter import UnreadCounter
from dailymir.notifications.feed import NotificationFeed
from dailymir.profile.onboarding import OnboardingWizard
from dailymir.profile.resolver import ProfileResolver
from dailymir.quiz.flow import DailyQuizFlow
from dailymir.results.aggregator import ResultsAggregator
from dailymir.studio import StudioDecks

logger = logging.getLogger(__name__)


class UserWorkspace:
    """Bundles one user's controllers around a single API client.

    Args:
        user_id: The auth user id the workspace belongs to.
        client: The user's authenticated API client.
    """

    def __init__(self, user_id: str, client: AuthenticatedClient) -> None:
        self.user_id = user_id
        self.client = client
        self.results = ResultsAggregator(client)
        self.flow = DailyQuizFlow(client, self.results)
        self.notifications_api = NotificationsApi(client)
        self.unread = UnreadCounter(self.notifications_api)
        self.feed = NotificationFeed(self.notifications_api, self.unread)
        self.profile = ProfileResolver(client)
        self.onboarding = OnboardingWizard(client, self.profile)
        self.studio = StudioDecks(client)

    @classmethod
    def create(
        cls,
        user_id: str,
        access_token: str,
        auth: AuthClient,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "UserWorkspace":
        """Builds a workspace for a freshly authenticated user.

        Raises:
            ConfigError: If API_BASE_URL is not configured.
        """
        accessor = SessionAccessor(auth, access_token)
        client = AuthenticatedClient(
            settings.require_api_base_url(),
            accessor,
            transport=transport,
            timeout=settings.http_timeout_seconds,
        )
        return cls(user_id, client)

    def adopt_token(self, access_token: str) -> None:
        """Switches the client to the token the browser just presented."""
        self.client.accessor.update_token(access_token)

    async def aclose(self) -> None:
        """Cancels every pending timer and request, then closes the client."""
        logger.debug("Closing workspace for %s", self.user_id)
        await self.flow.aclose()
        await self.feed.aclose()
        await self.unread.aclose()
        await self.onboarding.aclose()
        await self.profile.aclose()
        await self.client.aclose()
