# bhgrav/gravsim/body_data.py

"""
Owns the body array and its copies across compute devices (CPU numpy, Taichi).

Every body is one row of 12 scalars: position (0-2), pad, velocity (4-6), pad,
acceleration (8-10), mass (11). On the CPU the rows form an (N, 12) NumPy
array; on Taichi they live in an (N, 12) scalar field, plus a lazily
allocated second field so kernels can read one buffer and write the other.

The class tracks which device holds the authoritative copy and performs
transfers implicitly (if enabled) or explicitly via `ensure`.
"""

import numpy as np
import gc
import traceback
from typing import List, Optional, Union

from gravsim.constants import BODY_STRIDE, POS_SLICE, VEL_SLICE, ACC_SLICE, MASS_IDX

# conditional import for the data-parallel backend
try:
    import taichi as ti
    from taichi.lang.util import to_numpy_type
    HAVE_TAICHI = True
except ImportError:
    ti = None
    to_numpy_type = None
    HAVE_TAICHI = False

DeviceStr = str
NpArray = np.ndarray
TiField = object

# named column views of the body record
ATTRIBUTE_COLUMNS = {
    "positions":     POS_SLICE,
    "velocities":    VEL_SLICE,
    "accelerations": ACC_SLICE,
    "masses":        MASS_IDX,
}


class BodyData:
    """
    Body storage with cpu / gpu:ti copies and a front/back pair on Taichi.

    On "gpu:ti" the front field is the current state; `get_back_buffer()`
    returns the scratch field and `swap_buffers()` exchanges the two.
    """
    VALID_DEVICES = {"cpu", "gpu:ti"}

    def __init__(self, N: int, allow_implicit_transfers: bool = True, numpy_precision: type = np.float64,
                 taichi_is_active: bool = False):
        if not isinstance(N, (int, np.integer)) or N < 0:
            raise ValueError(f"N must be a non-negative integer, got {N}")
        self.N = int(N)
        self._allow_implicit_transfers = allow_implicit_transfers
        self._numpy_fp_type = numpy_precision
        self._taichi_is_active = taichi_is_active and HAVE_TAICHI
        self._locked_writeable = False
        try:
            self._data_cpu: NpArray = np.zeros((self.N, BODY_STRIDE), dtype=self._numpy_fp_type)
        except MemoryError:
            print(f"ERROR: BodyData failed allocating ({self.N}, {BODY_STRIDE}) body array. Not enough memory.")
            gc.collect(); raise
        self._location: DeviceStr = "cpu"
        self._gpu_dirty = True
        self._ti_front: Optional[TiField] = None
        self._ti_back: Optional[TiField] = None

    def _validate_device(self, device: DeviceStr):
        if device not in self.VALID_DEVICES:
            raise ValueError(f"Invalid device: '{device}'. Valid: {self.VALID_DEVICES}")
        if device == "gpu:ti" and not self._taichi_is_active:
            raise RuntimeError("Taichi required but unavailable (not installed or not initialized).")

    # public info getters
    def get_n(self) -> int: return self.N
    def get_dtype(self) -> np.dtype: return self._numpy_fp_type
    def get_location(self) -> DeviceStr: return self._location
    def get_attribute_names(self) -> List[str]: return list(ATTRIBUTE_COLUMNS.keys())
    def get_effective_precision_is_f64(self) -> bool: return self._numpy_fp_type == np.float64

    # core data access & management
    def set_bodies(self, data: NpArray):
        """Replaces the whole body array from the CPU, invalidating device copies."""
        if not isinstance(data, np.ndarray):
            raise TypeError("set_bodies() data must be a NumPy array")
        if data.shape != (self.N, BODY_STRIDE):
            raise ValueError(f"Shape mismatch set_bodies(): {data.shape} vs {(self.N, BODY_STRIDE)}")
        self._data_cpu = np.array(data, dtype=self._numpy_fp_type, copy=True, order='C')
        self._location = "cpu"
        self._gpu_dirty = True
        self._locked_writeable = False

    def get_bodies(self, device: DeviceStr = "cpu", writeable: bool = False) -> Union[NpArray, TiField]:
        """Body array on the requested device (front field on gpu:ti), transferring if needed."""
        self._validate_device(device)

        if writeable:
            if device != "cpu": raise ValueError("Writeable access only for device='cpu'.")
            if self._locked_writeable: raise RuntimeError("Body array already locked for writing.")
            if self._location != "cpu":
                self._data_cpu = self._transfer_gpu_to_cpu()
            self._locked_writeable = True
            self._location = "cpu"
            self._gpu_dirty = True
            return self._data_cpu

        if device == "cpu":
            if self._location != "cpu":
                if not self._allow_implicit_transfers:
                    raise RuntimeError("GPU->CPU transfer needed for bodies, implicit transfers disabled.")
                self._data_cpu = self._transfer_gpu_to_cpu()
                self._location = "cpu"
                self._gpu_dirty = False
            return self._data_cpu

        # device == "gpu:ti"
        if self._location == "gpu:ti" and self._ti_front is not None:
            return self._ti_front
        if self._location == "gpu:ti":
            raise RuntimeError("Authoritative Taichi body data missing.")
        if not self._allow_implicit_transfers:
            raise RuntimeError("CPU->GPU transfer needed for bodies, implicit transfers disabled.")
        self.ensure("gpu:ti")
        self._location = "gpu:ti"
        return self._ti_front

    def get(self, name: str, device: DeviceStr = "cpu") -> NpArray:
        """Named column view (positions, velocities, accelerations, masses) on the CPU."""
        if name not in ATTRIBUTE_COLUMNS:
            raise KeyError(f"Unknown attribute: '{name}'. Valid: {list(ATTRIBUTE_COLUMNS.keys())}")
        if device != "cpu":
            raise ValueError("Column views are only available on device='cpu'.")
        return self.get_bodies("cpu")[:, ATTRIBUTE_COLUMNS[name]]

    def release_writeable(self):
        """Releases the lock obtained via get_bodies(..., writeable=True)."""
        self._locked_writeable = False

    def ensure(self, target_device: DeviceStr):
        """Makes sure the target device holds an up-to-date copy of the bodies."""
        self._validate_device(target_device)
        if target_device == "cpu":
            if self._location != "cpu":
                self._data_cpu = self._transfer_gpu_to_cpu()
                self._location = "cpu"
                self._gpu_dirty = False
            return
        if self._location == "gpu:ti":
            return
        if self._ti_front is None or self._gpu_dirty:
            self._ti_front = self._transfer_cpu_to_ti(self._data_cpu, self._ti_front)
            self._gpu_dirty = False
        self.synchronize(target_device)

    def mark_modified(self, device: DeviceStr):
        """Declares `device` as holding the authoritative copy after an in-place update."""
        self._validate_device(device)
        self._location = device
        self._gpu_dirty = device == "cpu"

    # taichi ping-pong
    def get_back_buffer(self) -> TiField:
        self._validate_device("gpu:ti")
        if self._ti_back is None:
            self._ti_back = self._new_ti_field()
        return self._ti_back

    def swap_buffers(self):
        """Exchanges front and back Taichi fields; the new front becomes authoritative."""
        if self._ti_front is None or self._ti_back is None:
            raise RuntimeError("swap_buffers() needs both Taichi buffers allocated.")
        self._ti_front, self._ti_back = self._ti_back, self._ti_front
        self._location = "gpu:ti"
        self._gpu_dirty = False

    def _new_ti_field(self) -> TiField:
        if self.N == 0:
            raise RuntimeError("Cannot allocate Taichi body fields for N=0.")
        return ti.field(dtype=ti.lang.impl.current_cfg().default_fp, shape=(self.N, BODY_STRIDE))

    def _transfer_cpu_to_ti(self, source: NpArray, existing: Optional[TiField]) -> TiField:
        try:
            field = existing if existing is not None else self._new_ti_field()
            np_dtype = to_numpy_type(field.dtype)
            field.from_numpy(np.ascontiguousarray(source, dtype=np_dtype))
            return field
        except Exception as e:
            print(f"ERROR during body transfer to 'gpu:ti': {e}")
            traceback.print_exc()
            raise RuntimeError("Data transfer of bodies to gpu:ti failed.") from e

    def _transfer_gpu_to_cpu(self) -> NpArray:
        if self._ti_front is None:
            raise RuntimeError(f"Cannot transfer bodies: authoritative data missing from '{self._location}'.")
        try:
            ti.sync()
            return self._ti_front.to_numpy().astype(self._numpy_fp_type, copy=False)
        except Exception as e:
            print(f"ERROR GPU->CPU body transfer: {e}"); traceback.print_exc()
            raise RuntimeError("GPU->CPU transfer failed.") from e

    def synchronize(self, device: DeviceStr):
        """Waits for queued work on `device` to finish."""
        if device == "gpu:ti" and self._taichi_is_active and ti.lang.impl.current_cfg().arch != ti.cpu:
            ti.sync()

    def cleanup_gpu_resources(self):
        """Drops the Taichi fields after pulling authoritative data back to the CPU."""
        if self._location != "cpu" and self._ti_front is not None:
            self._data_cpu = self._transfer_gpu_to_cpu()
            self._location = "cpu"
        self._ti_front = None
        self._ti_back = None
        self._gpu_dirty = True
        gc.collect()
