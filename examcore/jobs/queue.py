from redis import Redis
from rq import Queue

from examcore.core.config import settings

redis = Redis.from_url(settings.REDIS_URL)
# invitation mails go out in one job per activation
queue = Queue(settings.RQ_QUEUE, connection=redis, default_timeout=600)
