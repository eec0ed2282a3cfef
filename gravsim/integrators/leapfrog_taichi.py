# bhgrav/gravsim/integrators/leapfrog_taichi.py
"""
Leapfrog (kick-drift-kick) on the Taichi body fields.

kick 1 + drift read the front field and write the back field, then the
buffers are swapped so the force pass sees the drifted positions in the
front field; kick 2 updates the front field in place.
"""

import numpy as np
from typing import Callable, Dict, Optional

from gravsim.integrators.base import Integrator
from gravsim.body_data import BodyData
from gravsim.constants import BODY_STRIDE, POS_X, VEL_X, ACC_X

try:
    import taichi as ti
    from taichi.lang.util import to_numpy_type
    HAVE_TAICHI = True
except ImportError:
    ti = None
    to_numpy_type = None
    HAVE_TAICHI = False


if HAVE_TAICHI:
    @ti.kernel
    def kick_drift_ti_kernel(front: ti.template(), back: ti.template(), dt_field: ti.template(),
                             pinned: ti.template()):
        """(Taichi Kernel) back = front after v += dt/2*a and x += dt*v."""
        for i in range(front.shape[0]):
            for c in ti.static(range(BODY_STRIDE)):
                back[i, c] = front[i, c]
            if i != pinned[0]:
                dt = dt_field[0]
                for a in ti.static(range(3)):
                    v = front[i, VEL_X + a] + 0.5 * dt * front[i, ACC_X + a]
                    back[i, VEL_X + a] = v
                    back[i, POS_X + a] = front[i, POS_X + a] + dt * v

    @ti.kernel
    def kick_ti_kernel(bodies: ti.template(), dt_field: ti.template(), pinned: ti.template()):
        """(Taichi Kernel) v += dt/2*a in place."""
        for i in range(bodies.shape[0]):
            if i != pinned[0]:
                dt = dt_field[0]
                for a in ti.static(range(3)):
                    bodies[i, VEL_X + a] += 0.5 * dt * bodies[i, ACC_X + a]


class LeapfrogTaichi(Integrator):
    """Leapfrog KDK with ping-pong Taichi body buffers."""

    def __init__(self):
        if not HAVE_TAICHI:
            raise ImportError("Taichi is required for LeapfrogTaichi but not found.")
        self.ti_dt = None
        self.ti_pinned = None
        self.np_fp_dtype = None

    def setup(self, bd: BodyData, config: dict = None):
        ti_fp = ti.lang.impl.current_cfg().default_fp
        self.np_fp_dtype = to_numpy_type(ti_fp)
        # scalar fields survive repeated setup() calls
        if self.ti_dt is None:
            self.ti_dt = ti.field(dtype=ti_fp, shape=1)
            self.ti_pinned = ti.field(dtype=ti.i32, shape=1)
        self.ti_pinned[0] = self.pinned_body(config, bd.get_n())
        bd.ensure("gpu:ti")
        bd.get_back_buffer()
        print(f"LeapfrogTaichi Integrator Setup (TaichiFP={ti_fp}).")

    def step(self, bd: BodyData, dt: float, forces_callback: Callable[[], None],
             config: Optional[Dict] = None, current_step: int = -1):
        if self.ti_dt is None: raise RuntimeError("LeapfrogTaichi.step() called before setup().")
        self.ti_dt.from_numpy(np.array([dt], dtype=self.np_fp_dtype))
        self.ti_pinned[0] = self.pinned_body(config, bd.get_n())

        front = bd.get_bodies("gpu:ti")
        back = bd.get_back_buffer()
        kick_drift_ti_kernel(front, back, self.ti_dt, self.ti_pinned)
        bd.swap_buffers()

        forces_callback()

        kick_ti_kernel(bd.get_bodies("gpu:ti"), self.ti_dt, self.ti_pinned)
        bd.mark_modified("gpu:ti")

    def cleanup(self):
        self.ti_dt = None
        self.ti_pinned = None
