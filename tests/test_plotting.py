import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt

from longmpc.plotting import plot_trajectory


def test_plot_prediction(controller, cruise_state, cruise_params):
    output = controller.step(cruise_state, cruise_params)
    fig = plot_trajectory(
        output.trajectory,
        time_gap=1.5,
        cost_model=controller.cost_model,
        lead_velocity=20.0,
        show=False,
    )
    assert len(fig.axes) == 4
    assert len(fig.axes[0].lines) == 3
    plt.close(fig)
