from gacha_engine.models.collection_entry import CollectionEntry
from gacha_engine.models.event_log import EventLog
from gacha_engine.models.pity_state import PityState
from gacha_engine.models.player import Player
from gacha_engine.models.pull_record import PullRecord
from gacha_engine.models.wallet_balance import WalletBalance

__all__ = ("CollectionEntry", "EventLog", "PityState", "Player", "PullRecord", "WalletBalance")
