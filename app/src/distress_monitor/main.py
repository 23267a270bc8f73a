import asyncio
import logging
import os
import signal

from distress_monitor.mqtt.mqtt_app import SafetyMqttApp

log = logging.getLogger("launcher")
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))


async def _main() -> None:
    app = SafetyMqttApp()
    await app.run()


if __name__ == "__main__":
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    main_task = loop.create_task(_main())
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, main_task.cancel)
        except (NotImplementedError, RuntimeError):
            pass
    try:
        loop.run_until_complete(main_task)
    except asyncio.CancelledError:
        log.info("Shutting down")
    finally:
        loop.close()
