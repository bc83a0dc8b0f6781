from .token_sweep import start_token_sweep_job, stop_token_sweep_job, sweep_expired_tokens

__all__ = ['start_token_sweep_job', 'stop_token_sweep_job', 'sweep_expired_tokens']
