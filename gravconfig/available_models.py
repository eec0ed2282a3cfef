# bhgrav/gravconfig/available_models.py
"""
Defines the physics models available for selection.
The structure allows dynamic loading by the PhysicsManager.
"""

# model type -> list of available implementations for that type
AVAILABLE_MODELS = {
    "gravity": [
        {
            "id": "gravity_dense_numba",
            "name": "Barnes-Hut Dense Octree (Numba)",
            "description": "Fixed-depth Morton-addressed octree, iterative path walk per body, Numba on the CPU.",
            "module": "gravsim.physics.gravity.gravity_dense_numba",
            "class": "GravityDenseNumba",
            "required_backend": "numpy",
            "notes": "Sequential reference. Uses cell centers, so nearby forces are approximate.",
        },
        {
            "id": "gravity_cell_tree",
            "name": "Barnes-Hut Adaptive Octree (Numba)",
            "description": "Arena-allocated adaptive octree rebuilt by insertion each step, recursive walk using centers of mass.",
            "module": "gravsim.physics.gravity.gravity_cell_tree",
            "class": "GravityCellTreeNumba",
            "required_backend": "numpy",
            "notes": "Exact for isolated pairs; depth capped by max_tree_depth.",
        },
        {
            "id": "gravity_dense_taichi",
            "name": "Barnes-Hut Dense Octree (Taichi)",
            "description": "Dense octree with atomic fill and per-body path walk as Taichi kernels.",
            "module": "gravsim.physics.gravity.gravity_dense_taichi",
            "class": "GravityDenseTaichi",
            "required_backend": "gpu:ti",
            "notes": "Data-parallel variant; pair with the leapfrog_taichi integrator.",
        },
        {
            "id": "gravity_pp_cpu",
            "name": "Direct PP (Numba)",
            "description": "Direct body-body N^2 gravity with the same softening floor as the trees.",
            "module": "gravsim.physics.gravity.gravity_pp_cpu",
            "class": "GravityPPCpu",
            "required_backend": "numpy",
            "notes": "Exact reference, very slow for large N.",
        },
    ],
}

# --- model validation ---
def _validate_models():
    required_keys = ["id", "name", "module", "class", "required_backend"]
    for model_type, model_list in AVAILABLE_MODELS.items():
        ids = [model_def.get("id") for model_def in model_list]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate model IDs for type '{model_type}': {ids}")
        for model_def in model_list:
            if not all(key in model_def for key in required_keys):
                raise ValueError(f"Model definition is missing required keys: {model_def}")
_validate_models()
