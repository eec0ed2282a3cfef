# bhgrav/gravsim/integrators/leapfrog.py
import traceback
from typing import Callable, Dict, Optional

from gravsim.integrators.base import Integrator
from gravsim.body_data import BodyData
from gravsim.constants import POS_SLICE, VEL_SLICE, ACC_SLICE

class Leapfrog(Integrator):
    """
    implements the leapfrog (kick-drift-kick) time integration scheme on the
    cpu body array, updating it in place.
    """

    def setup(self, bd: BodyData, config: dict = None):
        print("Leapfrog Integrator Setup.")

    def step(self, bd: BodyData, dt: float, forces_callback: Callable[[], None],
             config: Optional[Dict] = None, current_step: int = -1):
        """
        performs one leapfrog integration step:
        1. kick 1: v += dt/2 * a(t)
        2. drift: x += dt * v(t+dt/2)
        3. force calculation on the drifted positions: a(t+dt)
        4. kick 2: v += dt/2 * a(t+dt)
        the pinned body (config '_pinned_body') is left untouched.
        """
        bd.ensure("cpu")
        n = bd.get_n()
        movable = self.movable_mask(config, n)
        half_dt = 0.5 * dt

        # kick 1 + drift
        bodies = bd.get_bodies("cpu", writeable=True)
        try:
            bodies[movable, VEL_SLICE] += half_dt * bodies[movable, ACC_SLICE]
            bodies[movable, POS_SLICE] += dt * bodies[movable, VEL_SLICE]
        except Exception as e:
            print(f"      ERROR during Kick 1 / Drift: {e}"); traceback.print_exc()
            raise
        finally:
            bd.release_writeable()

        # accelerations at t+dt from the post-drift tree
        forces_callback()

        # kick 2
        bodies = bd.get_bodies("cpu", writeable=True)
        try:
            bodies[movable, VEL_SLICE] += half_dt * bodies[movable, ACC_SLICE]
        except Exception as e:
            print(f"      ERROR during Kick 2: {e}"); traceback.print_exc()
            raise
        finally:
            bd.release_writeable()
