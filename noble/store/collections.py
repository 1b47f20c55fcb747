USERS = "users"
SWIPES = "swipes"
LIKES = "likes"
MATCHES = "matches"
CONVERSATIONS = "conversations"
MESSAGES = "messages"
SESSIONS = "sessions"
VERIFICATIONS = "verifications"
