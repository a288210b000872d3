"""Alias router: the logical index name and its single physical target."""

from reindex.exceptions import AliasSwapError, ErrorCode, RetireError, VectorStoreError
from reindex.logging_config import get_logger
from reindex.observability.metrics import track_alias_swap
from reindex.pipeline.models import Addressing, AddressingMode
from reindex.retry import RetryPolicy
from reindex.vectorstore.models import AliasAction
from reindex.vectorstore.service import VectorStore

logger = get_logger(__name__)


class AliasRouter:
    """Resolves and repoints the logical index name.

    Every repoint is one atomic backend request carrying both the delete
    of the old binding and the create of the new one, so readers never see
    the alias unresolved.
    """

    def __init__(
        self,
        store: VectorStore,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._store = store
        self._retry = retry_policy or RetryPolicy()

    async def resolve(self, alias: str) -> str | None:
        """Return the physical index an alias points at, or None if unbound.

        Raises:
            VectorStoreError: If the backend is unavailable.
        """
        aliases = await self._store.list_aliases()
        return aliases.get(alias)

    async def probe(self, name: str) -> Addressing:
        """Work out how a logical name is currently served.

        An alias binding wins; otherwise a physical collection carrying the
        name means the deployment still addresses it directly.
        """
        target = await self.resolve(name)
        if target is not None:
            return Addressing(mode=AddressingMode.ALIASED, name=name, physical_name=target)
        if await self._store.collection_exists(name):
            return Addressing(mode=AddressingMode.DIRECT, name=name, physical_name=name)
        return Addressing(mode=AddressingMode.UNBOUND, name=name)

    async def swap(self, alias: str, new_index: str) -> str | None:
        """Atomically repoint an alias.

        Args:
            alias: Logical name.
            new_index: Physical index to serve from now on.

        Returns:
            The previously aliased index, or None on the first-ever swap.

        Raises:
            AliasSwapError: If the binding could not be changed. The alias
                is then exactly as it was.
        """
        try:
            previous = await self.resolve(alias)
        except VectorStoreError as e:
            track_alias_swap(alias, success=False)
            raise AliasSwapError(
                f"Could not resolve alias {alias} before swap: {e.message}",
                details={"alias": alias, "new_index": new_index},
            ) from e

        if previous == new_index:
            logger.info(f"Alias {alias} already points at {new_index}")
            return previous

        actions = [AliasAction.create(alias, new_index)]
        if previous is not None:
            actions.insert(0, AliasAction.delete(alias))

        try:
            await self._retry.call(self._store.update_aliases, actions)
        except VectorStoreError as e:
            # A lost response can hide an update that did apply.
            if await self._resolves_to(alias, new_index):
                logger.warning(
                    f"Alias update reported failure but {alias} resolves to {new_index}",
                    extra={"alias": alias, "code": e.code.value},
                )
            else:
                track_alias_swap(alias, success=False)
                raise AliasSwapError(
                    f"Failed to point {alias} at {new_index}: {e.message}",
                    details={"alias": alias, "new_index": new_index, "previous": previous},
                ) from e

        track_alias_swap(alias)
        logger.info(
            f"Alias {alias} now points at {new_index}",
            extra={"alias": alias, "new_index": new_index, "previous": previous},
        )
        return previous

    async def migrate_direct(self, name: str, new_index: str) -> str:
        """Move a directly addressed deployment onto an alias.

        The physical collection carrying the logical name is deleted and the
        name is re-bound as an alias of ``new_index``. Qdrant cannot hold a
        collection and an alias under one name, so the name is briefly
        unresolvable. This is a one-way, one-time transition.

        Returns:
            The name of the deleted direct collection.

        Raises:
            AliasSwapError: With ``details["collection_deleted"]`` telling
                whether the direct collection was already removed.
        """
        logger.warning(
            f"Migrating {name} from direct collection to alias of {new_index}",
            extra={"alias": name, "new_index": new_index},
        )

        try:
            await self._store.delete_collection(name)
        except VectorStoreError as e:
            track_alias_swap(name, success=False)
            raise AliasSwapError(
                f"Could not delete direct collection {name}: {e.message}",
                code=ErrorCode.ALIAS_MIGRATION_ERROR,
                details={"alias": name, "new_index": new_index, "collection_deleted": False},
            ) from e

        try:
            await self._retry.call(
                self._store.update_aliases, [AliasAction.create(name, new_index)]
            )
        except VectorStoreError as e:
            if not await self._resolves_to(name, new_index):
                track_alias_swap(name, success=False)
                logger.critical(
                    f"Direct collection {name} deleted but alias creation failed; "
                    f"bind {name} to {new_index} manually",
                    extra={"alias": name, "new_index": new_index},
                )
                raise AliasSwapError(
                    f"Alias {name} could not be created after migration: {e.message}",
                    code=ErrorCode.ALIAS_MIGRATION_ERROR,
                    details={"alias": name, "new_index": new_index, "collection_deleted": True},
                ) from e

        track_alias_swap(name)
        logger.warning(
            f"Migration complete: {name} is now an alias of {new_index}",
            extra={"alias": name, "new_index": new_index},
        )
        return name

    async def retire(self, index: str) -> None:
        """Delete a physical index that no alias points at.

        Raises:
            RetireError: If the index is still aliased or deletion fails.
                Callers treat this as cleanup debt, not a run failure.
        """
        try:
            aliases = await self._store.list_aliases()
            bound = sorted(a for a, target in aliases.items() if target == index)
            if bound:
                raise RetireError(
                    f"Refusing to retire {index}: still aliased by {', '.join(bound)}",
                    details={"collection": index, "aliases": bound},
                )
            await self._store.delete_collection(index)
        except VectorStoreError as e:
            raise RetireError(
                f"Failed to retire {index}: {e.message}",
                details={"collection": index, **e.details},
            ) from e

        logger.info(f"Retired index {index}")

    async def _resolves_to(self, alias: str, index: str) -> bool:
        try:
            return await self.resolve(alias) == index
        except VectorStoreError:
            return False
