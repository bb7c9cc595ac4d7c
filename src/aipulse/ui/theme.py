APP_CSS = """
Screen {
  background: #0c0f1a;
  color: #e8ecff;
}

TabbedContent ContentSwitcher {
  background: #0c0f1a;
}

TabPane {
  background: #0c0f1a;
  padding: 0;
}

ProviderCard, HistoryView {
  margin: 1 2;
  padding: 0;
  background: #111528;
  height: auto;
}

UpdatePanel {
  dock: bottom;
  height: auto;
  margin: 0 2;
}

CredentialsScreen {
  align: center middle;
}

#credentials {
  width: 72;
  height: auto;
  padding: 1 2;
  background: #141830;
  border: round #7184d6;
}

#credentials Input {
  margin-bottom: 1;
}

#credentials-error {
  color: #ff5e6c;
}

Footer {
  background: #0e1225;
  color: #7184d6;
}

Header {
  background: #141830;
  color: #e8ecff;
}
"""
