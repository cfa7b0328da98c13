from viewer.views.prepare_handlers import (
    PREPARE_RUN_PATH as PREPARE_RUN_PATH,
)
from viewer.views.prepare_handlers import (
    prepare_run as prepare_run,
)
from viewer.views.static import (
    IMMUTABLE_CACHE_CONTROL as IMMUTABLE_CACHE_CONTROL,
)
from viewer.views.static import (
    ImmutableStaticFiles as ImmutableStaticFiles,
)
