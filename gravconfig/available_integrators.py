# bhgrav/gravconfig/available_integrators.py
"""
Defines a list of all integrators available for selection.
"""

AVAILABLE_INTEGRATORS = [
    {
        "id": "leapfrog",
        "name": "Leapfrog (KDK)",
        "description": "Second-order Kick-Drift-Kick leapfrog on the CPU body array.",
        "module": "gravsim.integrators.leapfrog",
        "class": "Leapfrog",
        "order": 2,
        "required_backend": "numpy",
        "notes": "One force evaluation per step, on the drifted positions."
    },
    {
        "id": "leapfrog_taichi",
        "name": "Leapfrog (KDK, Taichi)",
        "description": "Kick-Drift-Kick as Taichi kernels with ping-pong body buffers.",
        "module": "gravsim.integrators.leapfrog_taichi",
        "class": "LeapfrogTaichi",
        "order": 2,
        "required_backend": "gpu:ti",
        "notes": "Keeps bodies on the Taichi device between steps when paired with gravity_dense_taichi."
    },
]

# --- integrator validation ---
def _validate_integrators():
    for integrator_def in AVAILABLE_INTEGRATORS:
        required_keys = ["id", "name", "module", "class", "order", "required_backend"]
        if not all(key in integrator_def for key in required_keys):
            raise ValueError(f"Integrator definition is missing required keys: {integrator_def}")
_validate_integrators()
