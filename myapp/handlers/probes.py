import datetime
import kopf


@kopf.on.probe(id='now')
def get_current_timestamp(**kwargs):
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@kopf.on.probe(id='controller')
def controller_running(memo: kopf.Memo, **kwargs):
    task = getattr(memo, "controller_task", None)
    return task is not None and not task.done()
