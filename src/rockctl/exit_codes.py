"""Process exit codes for the rockctl command surface.

Translation from results to these codes happens only in ``rockctl.cli``.
``ERR_WILL_NOT_BOOT`` is reserved for one meaning: the image will not boot.
"""

from __future__ import annotations

OK = 0
ERR_WILL_NOT_BOOT = 1
ERR_USAGE = 2
ERR_CONFIG = 3
ERR_PREREQ = 4
ERR_INCONCLUSIVE = 5
ERR_HOST = 6
ERR_VALIDATION = 7
ERR_INTERNAL = 99
