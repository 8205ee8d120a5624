import asyncio
import kopf
import logging
import myapp.handlers.admission as admission
import myapp.handlers.myapp as events
import myapp.handlers.probes as probes
from myapp import __version__
from myapp.controller import Controller
from myapp.types.settings import Settings
from myapp.store import KubernetesObjectStore
from myapp.sensors import init_metrics_server, SensorDelegate, PrometheusMonitor
from kubernetes_asyncio import config
from kubernetes_asyncio.client.api_client import ApiClient


# Configure Kopf settings
@kopf.on.startup()
async def setup(
    settings: kopf.OperatorSettings, memo: kopf.Memo, logger: logging.Logger, **kwargs
):
    # Load Kubernetes config - try in-cluster first (for production), then local kubeconfig (for dev)
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        logger.info("In-cluster config not found, trying local kubeconfig")
        try:
            await config.load_kube_config()
            logger.info("Loaded local Kubernetes configuration")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    memo.conf = conf = Settings()

    # One ApiClient shared by every store call
    memo.store = KubernetesObjectStore(
        ApiClient(), timeout=conf.store_timeout_seconds
    )
    logger.info("Shared Kubernetes API client initialized")

    # Initialize sensor infrastructure
    sensor_delegate = SensorDelegate()
    sensor_delegate.add(PrometheusMonitor(version=__version__))
    memo.sensor = sensor_delegate
    logger.info("Sensor infrastructure initialized with PrometheusMonitor")

    try:
        init_metrics_server(conf.metrics_port)
    except Exception as e:
        logger.error(f"Failed to start metrics server: {e}")
        logger.warning("Continuing without metrics server")

    # Admission webhooks are served by kopf itself
    settings.admission.server = kopf.WebhookServer(
        addr="0.0.0.0",
        port=conf.webhook_port,
        host=conf.webhook_host,
        certfile=conf.webhook_certfile,
        pkeyfile=conf.webhook_keyfile,
    )

    # Post only warnings and errors as Kubernetes events
    settings.posting.enabled = True
    settings.posting.level = logging.WARNING

    memo.controller = Controller(memo.store, conf=conf, sensor=sensor_delegate)
    # kopf watches MyApps and their children and feeds the work queue
    memo.controller_task = asyncio.create_task(
        memo.controller.run(watch=False), name="myapp-controller"
    )


@kopf.on.cleanup()
async def cleanup(memo: kopf.Memo, logger: logging.Logger, **kwargs):
    """Cleanup handler for operator shutdown."""
    logger.info("Shutting down operator...")

    task = getattr(memo, "controller_task", None)
    if task is not None:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Controller stopped")

    store = getattr(memo, "store", None)
    if store is not None:
        await store.close()
        logger.info("Shared API client closed")

    logger.info("Operator shutdown complete")


__all__ = [
    "admission",
    "events",
    "probes",
]
