import os
import logging
from typing import Optional

from google.cloud.firestore_v1 import AsyncClient, Client

logger = logging.getLogger(__name__)


class FirestoreDB:
    """
    Owns the Firestore clients used by the listing and message stores.

    Reads and writes go through an :class:`AsyncClient`.  Realtime listeners
    (``on_snapshot``) only exist on the synchronous :class:`Client`, so a
    second client is created lazily the first time a view subscribes.

    The same object connects to:

    * **A local Firestore emulator** when ``emulator_host`` is given.
    * **The real Firestore backend** otherwise.
    * **Mocked clients** after :meth:`mock_firestore_for_tests`.
    """

    def __init__(
        self,
        project_id: str,
        database: Optional[str] = None,
        credentials=None,
        emulator_host: Optional[str] = None,
    ):
        """
        Parameters
        ----------
        project_id :
            Google Cloud project identifier (e.g. ``"student-market"``).
        database :
            Optional Firestore database ID (defaults to the default database).
        credentials :
            Explicit credentials object; if *None*, the default credentials
            chain is used.
        emulator_host :
            ``host:port`` of a running Firestore emulator.
        """
        self.project_id = project_id
        self.database = database
        self.credentials = credentials
        self._emulator_host = emulator_host
        self._watch_client: Optional[Client] = None

        self.client: AsyncClient = self._init_client()

    @classmethod
    def from_config(cls, config, credentials=None) -> "FirestoreDB":
        return cls(
            project_id=config.project_id,
            database=config.database,
            credentials=credentials,
            emulator_host=config.emulator_host,
        )

    # --------------------------------------------------------------------- #
    # Internal helpers                                                      #
    # --------------------------------------------------------------------- #

    def _client_kwargs(self) -> dict:
        kwargs = {"project": self.project_id, "credentials": self.credentials}
        if self.database:
            kwargs["database"] = self.database
        return kwargs

    def _init_client(self) -> AsyncClient:
        """
        Point the environment at the emulator (or away from it) and build the
        async client.  Any cached watch client is dropped so both stay on the
        same backend.
        """
        if self._emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = self._emulator_host
            logger.info(f"Using Firestore emulator on {self._emulator_host}")
        else:
            os.environ.pop("FIRESTORE_EMULATOR_HOST", None)
        self._watch_client = None
        return AsyncClient(**self._client_kwargs())

    # --------------------------------------------------------------------- #
    # Public API                                                            #
    # --------------------------------------------------------------------- #

    @property
    def watch_client(self) -> Client:
        """Synchronous client used for ``on_snapshot`` listeners."""
        if self._watch_client is None:
            self._watch_client = Client(**self._client_kwargs())
            logger.debug("Created Firestore watch client")
        return self._watch_client

    def use_emulator(self, host: str = "localhost:8080"):
        self._emulator_host = host
        self.client = self._init_client()
        logger.info(f"Emulator enabled on {host}")

    def clear_emulator(self):
        self._emulator_host = None
        self.client = self._init_client()
        logger.info("Emulator disabled, using real Firestore.")

    def mock_firestore_for_tests(self):
        """Replace both clients with :class:`unittest.mock.MagicMock` objects."""
        from unittest.mock import MagicMock

        self.client = MagicMock()
        self._watch_client = MagicMock()
        logger.info("Firestore clients replaced with MagicMock for unit tests.")
