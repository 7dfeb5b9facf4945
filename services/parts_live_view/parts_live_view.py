"""Watch runner entry point.

Opens the live parts view for one organization and logs the reconciled list
every time it changes, until interrupted.

Usage:
    WATCH_ORG_ID=<org uuid> python -m services.parts_live_view.parts_live_view
"""

import asyncio

from services.parts_live_view.PartsLiveView import PartsLiveView
from shared.clients.backend.BackendClientManager import BackendClientManager
from shared.clients.realtime.RealtimeClientManager import RealtimeClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.errors import BackendError
from shared.models.part import PartWithDocument
from shared.models.session import AppSession


def _describe(parts: list[PartWithDocument]) -> str:
    placeholders = [p for p in parts if p.is_processing_placeholder]
    lines = [f"{len(parts) - len(placeholders)} parts, {len(placeholders)} documents processing"]
    for part in placeholders:
        lines.append(f"  [{part.document.last_status}] {part.document.file_name}")
    for part in parts[len(placeholders):][:10]:
        file_name = part.document.file_name if part.document else "-"
        lines.append(f"  {part.part_number or part.drawing_number or part.id} ({file_name}) {part.workflow_status or ''}")
    return "\n".join(lines)


async def main() -> None:
    """Boot the clients, open the view and keep it running."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    org_id = config.get_string_val("WATCH_ORG_ID")
    access_token = config.get_string_val("WATCH_ACCESS_TOKEN", default="") or None

    backend_client = BackendClientManager(helper_config=config).get_client()
    realtime_client = RealtimeClientManager(helper_config=config).get_client()

    try:
        # backend is required; without it there is nothing to watch
        try:
            await backend_client.boot()
            await backend_client.do_healthcheck()
        except BackendError as e:
            logger.error("Error booting Backend client %s: %s. Aborting.", backend_client.get_engine_name(), e)
            return
        await realtime_client.boot()

        user_id = "watch-runner"
        if access_token:
            user = await backend_client.do_fetch_user(access_token)
            user_id = user.get("id", user_id)
        session = AppSession(user_id=user_id, org_id=org_id, access_token=access_token)

        view = PartsLiveView(
            helper_config=config,
            backend_client=backend_client,
            realtime_client=realtime_client,
            session=session,
        )
        view.add_listener(lambda parts: logger.info("Parts view changed: %s", _describe(parts), color="cyan"))
        await view.do_open()
        if view.error:
            logger.warning("Live view opened with error: %s", view.error)

        # runs until cancelled (Ctrl-C)
        await asyncio.Event().wait()
    finally:
        await realtime_client.close()
        await backend_client.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
